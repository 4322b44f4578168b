"""Domain constants shared by validation and the provider client."""

import re

# ISO 4217 alphabetic code (upper-case, exactly three letters)
CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

# Used when the upstream payload omits its own `provider` field
DEFAULT_PROVIDER_NAME = "exchangerate-api"

PUSH_EVENT_RATES_UPDATE = "rates:update"
