# constants.py

SUPPORTED_CURRENCIES = [
    "USD", "EUR", "UAH", "GBP", "JPY", "CNY", "CHF", "CAD", "AUD", "PLN",
    "CZK", "SEK", "NOK", "DKK", "HUF", "RON", "BGN", "RUB", "TRY", "INR",
    "BRL", "MXN", "ZAR", "KRW", "SGD", "HKD", "NZD", "THB", "MYR", "IDR",
    "PHP", "VND", "AED", "SAR", "ILS", "EGP", "KWD", "QAR",
]  # fmt: skip

DEFAULT_CURRENCY = "USD"

DEFAULT_CATEGORY_COLOR = "#6B7280"

# Seeded for every new profile
DEFAULT_CATEGORIES = [
    {"name": "Food & Dining", "color": "#EF4444", "type": "expense"},
    {"name": "Transportation", "color": "#F59E0B", "type": "expense"},
    {"name": "Shopping", "color": "#8B5CF6", "type": "expense"},
    {"name": "Entertainment", "color": "#EC4899", "type": "expense"},
    {"name": "Bills & Utilities", "color": "#3B82F6", "type": "expense"},
    {"name": "Healthcare", "color": "#10B981", "type": "expense"},
    {"name": "Education", "color": "#6366F1", "type": "expense"},
    {"name": "Home & Garden", "color": "#14B8A6", "type": "expense"},
    {"name": "Travel", "color": "#F97316", "type": "expense"},
    {"name": "Personal Care", "color": "#A855F7", "type": "expense"},
    {"name": "Other Expenses", "color": "#6B7280", "type": "expense"},
    {"name": "Salary", "color": "#22C55E", "type": "income"},
    {"name": "Freelance", "color": "#3B82F6", "type": "income"},
    {"name": "Investments", "color": "#8B5CF6", "type": "income"},
    {"name": "Other Income", "color": "#10B981", "type": "income"},
]

# Auto-created when a user records a transaction without any payment method
FALLBACK_PAYMENT_METHOD_NAME = "Cash/Wallet"
FALLBACK_PAYMENT_METHOD_COLOR = "#10B981"

RATE_API_PROVIDER = "exchangerate-api.com"
FALLBACK_RATE_CURRENCIES = ["USD", "EUR", "GBP", "UAH"]
RATE_RETENTION_DAYS = 90

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
