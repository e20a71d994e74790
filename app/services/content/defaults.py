"""Стартовый каталог: карточки прав и шаблоны документов для пустой БД."""

CATEGORIES = [
    {"id": "tenant", "title": "Tenant Rights", "description": "Housing and rental rights"},
    {"id": "employment", "title": "Employment Rights", "description": "Workplace and labor rights"},
    {"id": "consumer", "title": "Consumer Rights", "description": "Shopping and service rights"},
    {"id": "traffic", "title": "Traffic Rights", "description": "Traffic stops and violations"},
    {"id": "arrests", "title": "Arrest Rights", "description": "Rights during arrests"},
]

CATEGORY_IDS = frozenset(c["id"] for c in CATEGORIES)

CARD_PRICE_CENTS = 50
TEMPLATE_PRICE_CENTS = 100

DEFAULT_CONTENT = [
    {
        "id": "tenant-eviction-rights",
        "title": "Rights During Eviction",
        "category": "tenant",
        "content": """**Your Rights During Eviction:**

- **Proper Notice Required**: Landlords must provide written notice (typically 30-60 days depending on your state)
- **Right to Contest**: You can challenge the eviction in court
- **Right to Repairs**: Landlords cannot evict for requesting necessary repairs
- **No Self-Help Evictions**: Landlords cannot change locks, shut off utilities, or remove your belongings
- **Right to Legal Representation**: You have the right to an attorney in eviction proceedings

**Immediate Steps:**
1. Document everything in writing
2. Know your state's specific notice requirements
3. Seek legal aid if needed
4. Respond to court papers promptly""",
    },
    {
        "id": "employment-wage-rights",
        "title": "Wage and Hour Rights",
        "category": "employment",
        "content": """**Your Wage Rights:**

- **Minimum Wage**: You must be paid at least federal/state minimum wage
- **Overtime Pay**: Time-and-a-half for hours over 40 per week (most employees)
- **Meal Breaks**: Required break periods vary by state
- **Final Paycheck**: Must receive final pay by specific deadlines
- **Wage Theft Protection**: Employers cannot illegally withhold wages

**Next Steps:**
1. Keep detailed records of hours worked
2. File complaint with Department of Labor
3. Contact your state's wage and hour division""",
    },
    {
        "id": "traffic-stop-rights",
        "title": "Traffic Stop Rights",
        "category": "traffic",
        "content": """**During a Traffic Stop:**

- **Right to Remain Silent**: You don't have to answer questions beyond providing ID
- **Right to Refuse Searches**: You can refuse consent to search your vehicle
- **Right to Record**: You can record the interaction (check local laws)
- **Right to Ask if Free to Leave**: You can ask if you're being detained

**What NOT to Do:**
- Don't reach for documents until asked
- Don't get out unless instructed
- Don't consent to searches
- Don't admit guilt""",
    },
    {
        "id": "arrest-rights",
        "title": "Rights During Arrest",
        "category": "arrests",
        "content": """**Your Miranda Rights:**

- **Right to Remain Silent**: Anything you say can be used against you
- **Right to an Attorney**: You have the right to legal representation
- **Right to Have Attorney Present**: During questioning
- **Right to Appointed Attorney**: If you cannot afford one

**During Arrest:**
1. Stay calm and don't resist
2. Clearly state: "I invoke my right to remain silent"
3. Ask for a lawyer immediately
4. Don't sign anything without legal counsel""",
    },
    {
        "id": "consumer-return-rights",
        "title": "Return and Refund Rights",
        "category": "consumer",
        "content": """**Consumer Return Rights:**

- **Cooling-Off Period**: 3-day right to cancel certain contracts
- **Defective Products**: Right to refund or replacement for defective items
- **Online Purchases**: Many states require return policies to be clearly posted
- **Credit Card Protection**: Dispute charges for defective or undelivered goods

**Steps for Returns:**
1. Check store return policy first
2. Keep all receipts and documentation
3. Contact customer service
4. Dispute credit card charges if applicable""",
    },
]

DEFAULT_TEMPLATES = [
    {
        "id": "demand-letter-rent",
        "name": "Demand Letter for Unpaid Rent",
        "category": "tenant",
        "required_fields": ["landlordName", "landlordAddress", "tenantName", "propertyAddress", "rentAmount", "dueDate"],
    },
    {
        "id": "workplace-complaint",
        "name": "Formal Workplace Complaint",
        "category": "employment",
        "required_fields": ["employerName", "supervisorName", "employeeName", "incidentDate", "description"],
    },
    {
        "id": "consumer-complaint",
        "name": "Consumer Complaint Letter",
        "category": "consumer",
        "required_fields": ["companyName", "productService", "purchaseDate", "issueDescription", "desiredResolution"],
    },
]
