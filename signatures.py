"""
signatures.py - Vendor detection tables.

Static lists of regular expressions, DOM selectors, cookie names and
global names used to recognise cookie consent platforms, Google Tag
Manager containers, marketing pixels and analytics platforms.  Nothing
in here touches the browser or the network; the scanner modules import
these tables and apply them.
"""

import re

# ────────────────────────────────────────────────────────────────────
# COOKIE CONSENT PLATFORMS (CMPs)
#
# Checked in order against the live DOM.  The first platform with a
# matching element, script src or window global wins.
# ────────────────────────────────────────────────────────────────────

CMP_SIGNATURES = [
    {
        "name": "CookieInformation",
        "confidence": "high",
        "selectors": ['[class*="coi-"]', '[id*="coi"]'],
        "scripts": ["cookieinformation"],
        "globals": [],
    },
    {
        "name": "OneTrust",
        "confidence": "high",
        "selectors": ['[class*="onetrust"]', '[id*="onetrust"]', "#onetrust-banner-sdk"],
        "scripts": ["onetrust", "cookiepro"],
        "globals": ["OneTrust", "Optanon"],
    },
    {
        "name": "Cookiebot",
        "confidence": "high",
        "selectors": ['[class*="cookiebot"]', '[id*="cookiebot"]', "#CybotCookiebotDialog"],
        "scripts": ["cookiebot"],
        "globals": ["Cookiebot"],
    },
    {
        "name": "Termly",
        "confidence": "high",
        "selectors": ['[class*="termly"]', '[id*="termly"]'],
        "scripts": ["termly"],
        "globals": [],
    },
    {
        "name": "CookieYes",
        "confidence": "high",
        "selectors": [
            '[id*="cookieyes"]', '[class*="cookieyes"]',
            '[id*="ckyes"]', '[class*="ckyes"]',
            "[data-cookieyes]", "[data-ckyes]",
        ],
        "scripts": ["cookieyes", "ckyes"],
        "globals": ["cookieyes", "CookieYes", "ckyes"],
    },
    {
        # WordPress plugin, the class names are too generic for "high".
        "name": "GDPR Cookie Compliance",
        "confidence": "low",
        "selectors": [".gdpr-cookie-compliance-modal", '[class*="gdpr"]'],
        "scripts": [],
        "globals": [],
    },
    {
        "name": "CookieScript",
        "confidence": "high",
        "selectors": ['[id*="cookiescript"]', '[class*="cookiescript"]', "#cookiescript_injected"],
        "scripts": ["cookiescript"],
        "globals": [],
    },
    {
        "name": "Iubenda",
        "confidence": "high",
        "selectors": ['[id*="iubenda"]', '[class*="iubenda"]'],
        "scripts": ["iubenda"],
        "globals": ["_iub"],
    },
    {
        "name": "Usercentrics",
        "confidence": "high",
        "selectors": ["#usercentrics-root", '[id*="usercentrics"]'],
        "scripts": ["usercentrics"],
        "globals": ["UC_UI"],
    },
]

# Fallback when no named platform matched.
GENERIC_CMP_NAME = "Generic Cookie Banner"
GENERIC_BANNER_SELECTORS = [
    '[class*="cookie"]', '[id*="cookie"]',
    '[class*="consent"]', '[id*="consent"]',
    '[class*="gdpr"]', '[id*="gdpr"]',
]
GENERIC_BANNER_SCRIPTS = ["cookie", "consent", "gdpr"]
GENERIC_BANNER_TEXT = [
    r"cookie.*banner",
    r"cookie.*consent",
    r"gdpr.*banner",
    r"privacy.*banner",
]
# More than this many cookie/consent elements counts as a banner.
GENERIC_BANNER_MIN_ELEMENTS = 3

# Cookie names that reveal a CMP even when its banner is gone.
CONSENT_COOKIE_NAMES = {
    "consent": ["consent", "cookie_consent", "cookieconsent", "gdpr_consent", "privacy_consent"],
    "cookieyes": ["cookieyes", "ckyes", "cky-consent", "cookieyes-consent"],
    "cookiebot": ["cookiebot", "cookiebot-consent", "cookieconsent"],
    "cookieinformation": ["cookieinformation", "coi-consent", "cookieconsent"],
    "onetrust": ["onetrust", "optanonconsent", "optanonalertboxclosed"],
    "termly": ["termly", "termly-consent"],
    "iubenda": ["iubenda", "iub-consent"],
}

COOKIE_PROVIDER_NAMES = {
    "cookieyes": "CookieYes",
    "cookiebot": "Cookiebot",
    "cookieinformation": "CookieInformation",
    "onetrust": "OneTrust",
    "termly": "Termly",
    "iubenda": "Iubenda",
}

# ────────────────────────────────────────────────────────────────────
# ACCEPT BUTTONS
# ────────────────────────────────────────────────────────────────────

CMP_ACCEPT_SELECTORS = {
    "CookieInformation": [
        '[class*="coi-banner"] button[class*="accept"]',
        '[class*="coi-consent"] button[class*="accept"]',
        '[id*="coi"] button[class*="accept"]',
        '[class*="coi-banner"] a[class*="accept"]',
        '[class*="coi-consent"] a[class*="accept"]',
    ],
    "OneTrust": [
        "#onetrust-accept-btn-handler",
        '[class*="onetrust"] button[class*="accept"]',
        '#onetrust-banner-sdk button[class*="accept"]',
    ],
    "Cookiebot": [
        "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowallSelection",
        "#CybotCookiebotDialogBodyButtonAccept",
        '[class*="cookiebot"] button[class*="accept"]',
    ],
    "CookieYes": [
        "#cookieyes-banner button",
        "#cookieyes-banner a",
        "#ckyes-banner button",
        '[id*="cookieyes"] button[class*="accept"]',
        '[class*="cookieyes"] button[class*="accept"]',
        '[id*="ckyes"] button[class*="accept"]',
        ".cky-btn-accept",
        "button[data-cookieyes-accept]",
    ],
    "CookieScript": [
        "#cookiescript_accept",
        "#cookiescript_save",
        '[id*="cookiescript"] [role="button"][id*="accept"]',
        '[class*="cookiescript"] button[id*="accept"]',
    ],
    "Iubenda": [
        ".iubenda-cs-accept-btn",
    ],
    "Usercentrics": [
        '[data-testid="uc-accept-all-button"]',
    ],
    "Termly": [
        '[data-tid="banner-accept"]',
    ],
}

GENERIC_ACCEPT_SELECTORS = [
    'button[class*="accept"]',
    'button[class*="agree"]',
    'button[class*="consent"]',
    'a[class*="accept"]',
    'a[class*="agree"]',
    'button[id*="accept"]',
    'button[id*="agree"]',
    'a[id*="accept"]',
    'a[id*="agree"]',
    '[role="button"][class*="accept"]',
    '[role="button"][class*="agree"]',
    '[role="button"][id*="accept"]',
    '[role="button"][id*="agree"]',
    '[role="button"][id*="save"]',
    "button",
    "a",
    '[role="button"]',
    '[class*="cookie"] button',
    '[id*="cookie"] button',
    '[class*="consent"] button',
    '[id*="consent"] button',
    '[class*="cookie"] [role="button"]',
    '[class*="consent"] [role="button"]',
]

# Phrases that mark an "accept" control, grouped by language.
ACCEPT_PHRASES = {
    "en": ["accept all", "accept", "accept cookies", "allow all", "allow",
           "allow cookies", "i accept", "i agree", "agree", "ok", "okay",
           "got it", "consent", "save"],
    "da": ["tillad alle", "tillad", "accepter alle", "accepter",
           "jeg accepterer", "godkend alle", "godkend", "gem og luk", "ja"],
    "de": ["alle akzeptieren", "akzeptieren", "verstanden", "zustimmen",
           "alle zulassen", "einverstanden", "ja"],
    "fr": ["accepter tout", "tout accepter", "tous accepter", "accepter",
           "d'accord", "j'accepte", "oui"],
    "es": ["aceptar todo", "aceptar", "de acuerdo", "acepto", "sí"],
    "it": ["accetta tutto", "accetta", "va bene", "accetto", "sì"],
    "nl": ["alles accepteren", "accepteren", "akkoord", "ik accepteer", "ja"],
    "sv": ["acceptera alla", "acceptera", "godkänn alla", "jag accepterar", "ja"],
    "no": ["godta alle", "godta", "aksepter", "jeg godtar", "ja"],
    "fi": ["hyväksy kaikki", "hyväksy", "hyväksyn", "selvä"],
    "pl": ["zaakceptuj wszystkie", "akceptuj wszystkie", "akceptuję", "zgadzam się"],
    "pt": ["aceitar tudo", "aceitar todos", "aceitar", "concordo", "aceito"],
}


def _build_accept_pattern():
    phrases = set()
    for words in ACCEPT_PHRASES.values():
        phrases.update(words)
    # Longest first so "accept all" wins over "accept" in the match text.
    alternation = "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))
    return re.compile(r"(?<!\w)(?:" + alternation + r")(?!\w)", re.IGNORECASE)


ACCEPT_PATTERN = _build_accept_pattern()

# ────────────────────────────────────────────────────────────────────
# GOOGLE TAG MANAGER
# ────────────────────────────────────────────────────────────────────

GTM_ID_SHAPE = re.compile(r"^GTM-[A-Z0-9]{6,}$")

GTM_HTML_PATTERNS = [
    re.compile(r"googletagmanager\.com/gtm\.js\?id=(GTM-[A-Z0-9]+)", re.I),
    re.compile(r"googletagmanager\.com/ns\.html\?id=(GTM-[A-Z0-9]+)", re.I),
    re.compile(r"(GTM-[A-Z0-9]{6,})"),
]

# Shopify stores embed the id as "google_tag_ids":["GT-XXXX"], escaped or not.
SHOPIFY_TAG_ID_PATTERN = re.compile(
    r'\\?"google_tag_ids\\?"\s*:\s*\[\s*\\?"GT-([A-Z0-9]+)\\?"'
)

INLINE_SCRIPT_PATTERN = re.compile(r"<script\b[^>]*>([\s\S]*?)</script>", re.IGNORECASE)
DATALAYER_PUSH_PATTERN = re.compile(r"dataLayer\.push\(([^)]*)\)")
GTM_TOKEN_PATTERN = re.compile(r"GTM-[A-Z0-9]{6,}")

# Stape (server-side GTM hosting) loader script.
STAPE_CDN = "stapecdn.com"
STAPE_SCRIPT_SRC_PATTERN = re.compile(
    r"""<script[^>]+src=["']([^"']*stapecdn\.com[^"']*)["']""", re.IGNORECASE
)
STAPE_PIXEL_REF_PATTERN = re.compile(r"""stapecdn\.com/widget/script_pixel[^"'\s<>]*""")
STAPE_PIXEL_URL = "https://sp.stapecdn.com/widget/script_pixel?shop_id={shop_id}"
SHOP_ID_PATTERN = re.compile(r"""shop_id["']?\s*[:=]\s*["']?(\d+)""")
STAPE_GTM_ID_PATTERN = re.compile(r"""const\s+GTM_ID\s*=\s*['"]([^'"]+)['"]""")
BARE_CONTAINER_ID = re.compile(r"^[A-Z0-9]{6,}$")

# ────────────────────────────────────────────────────────────────────
# MARKETING PIXELS
#
# (method, pattern) pairs applied in order.  Group 1 is the id; a
# pattern with two groups contributes both.
# ────────────────────────────────────────────────────────────────────

PIXEL_PATTERNS = {
    "meta": [
        ("fbq-init-pattern", re.compile(r"""fbq\s*\(\s*['"]init['"]\s*,\s*['"]?(\d+)['"]?""", re.I)),
        ("fb-script-url", re.compile(r"""connect\.facebook\.net/[^"']*/fbevents\.js[^"']*[?&]id=(\d+)""", re.I)),
        ("fb-noscript-img", re.compile(
            r"""<noscript>[\s\S]*?<img[^>]*src=["']https://www\.facebook\.com/tr[^"']*id=(\d+)""", re.I)),
        ("fb-cookie", re.compile(r"_fbp[=:](\d+)", re.I)),
        ("fb-data-attribute", re.compile(r"""data-pixel-id=["'](\d+)["']""", re.I)),
    ],
    "tiktok": [
        ("ttq-load-pattern", re.compile(r"""ttq\.load\s*\(\s*['"](\d+)['"]""", re.I)),
        ("tiktok-script-url", re.compile(
            r"""analytics\.tiktok\.com/i18n/pixel/events\.js[^"']*[?&]id=(\d+)""", re.I)),
        ("snaptr-init-pattern", re.compile(r"""snaptr\s*\(\s*['"]init['"]\s*,\s*['"](\d+)['"]""", re.I)),
        ("tiktok-cookie", re.compile(r"_ttp[=:](\d+)", re.I)),
    ],
    "linkedin": [
        ("linkedin-partner-id", re.compile(r"""_linkedin_partner_id\s*=\s*["'](\d+)["']""", re.I)),
        ("linkedin-snaptr-init", re.compile(
            r"""snaptr\s*\(\s*['"]init['"]\s*,\s*['"](\d+)['"][\s\S]*?partnerId:\s*['"](\d+)['"]""", re.I)),
        ("linkedin-snq-init", re.compile(r"""snq\s*\(\s*['"]init['"]\s*,\s*['"](\d+)['"]""", re.I)),
        ("linkedin-script-url", re.compile(r"""linkedin\.com/px[^"']*[?&]pid=(\d+)""", re.I)),
        ("linkedin-cookie", re.compile(r"_liq[=:](\d+)", re.I)),
    ],
    "google_ads": [
        ("aw-pattern", re.compile(r"\b(AW-[A-Z0-9]+)")),
        ("gtag-aw-config", re.compile(r"""gtag\s*\(\s*['"]config['"]\s*,\s*['"](AW-[A-Z0-9]+)['"]""")),
        ("googleads-script-url", re.compile(
            r"""googleads\.g\.doubleclick\.net/pagead/conversion[^"']*[?&]id=(\d+)""", re.I)),
        ("gtm-aw-url", re.compile(r"""googletagmanager\.com/gtag/js[^"']*[?&]id=(AW-[A-Z0-9]+)""")),
    ],
}

# Google Ads cookie: flags the channel without yielding an id.
GOOGLE_ADS_COOKIE_PATTERN = re.compile(r"_gcl_[^=:]*[=:](\d+)", re.I)
AW_ID_PATTERN = re.compile(r"AW-[A-Z0-9]+")

# ────────────────────────────────────────────────────────────────────
# ANALYTICS / ATTRIBUTION PLATFORMS
# ────────────────────────────────────────────────────────────────────

PLATFORM_PATTERNS = {
    "reaktion": [
        re.compile(r"app\.reaktion\.com", re.I),
        re.compile(r"reaktion\.com/scripts", re.I),
        re.compile(r"reaktion\.com/assets", re.I),
        re.compile(r"reaktion.*analytics", re.I),
        re.compile(r"window\.reaktion", re.I),
        re.compile(r"reaktion.*tracking", re.I),
        re.compile(r"reaktion.*store", re.I),
    ],
    "profitmetrics": [
        re.compile(r"profitmetrics\.io", re.I),
        re.compile(r"profitmetrics.*script", re.I),
        re.compile(r"profitmetrics.*analytics", re.I),
        re.compile(r"window\.profitmetrics", re.I),
        re.compile(r"profitmetrics.*tracking", re.I),
    ],
    "triplewhale": [
        re.compile(r"triplewhale\.com", re.I),
        re.compile(r"triplewhale.*script", re.I),
        re.compile(r"triplewhale.*analytics", re.I),
        re.compile(r"window\.triplewhale", re.I),
        re.compile(r"triplewhale.*tracking", re.I),
        re.compile(r"triplewhale.*pixel", re.I),
    ],
}

PLATFORM_NETWORK_SIGNATURES = {
    "reaktion": "reaktion.com",
    "profitmetrics": "profitmetrics.io",
    "triplewhale": "triplewhale.com",
}

PLATFORM_DISPLAY_NAMES = {
    "reaktion": "Reaktion",
    "profitmetrics": "Profitmetrics",
    "triplewhale": "Triplewhale",
}

# Requests recorded by the scanner's network listener.
NETWORK_CAPTURE_SUBSTRINGS = [
    "reaktion.com",
    "profitmetrics.io",
    "triplewhale.com",
    "api.reaktion.com",
    "tracking/stores/",
    "/conversions",
]

# ────────────────────────────────────────────────────────────────────
# GOOGLE CONSENT MODE
# ────────────────────────────────────────────────────────────────────

GOOGLE_CONSENT_PROPERTIES = [
    "ad_storage",
    "analytics_storage",
    "functionality_storage",
    "security_storage",
]

GOOGLE_CONSENT_OPTIONAL_PROPERTIES = [
    "ad_user_data",
    "ad_personalization",
    "personalization_storage",
]

# Cookie name fragments per consent provider, used after acceptance.
# Shopify comes first: its cookie names also contain "cookieconsent".
CONSENT_MODE_COOKIE_NAMES = {
    "shopify": [
        "cookieconsentdeclined",
        "cookieconsentessentialgranted",
        "cookieconsentmarketinggranted",
        "cookieconsentpersonalizationgranted",
        "cookieconsentpreferencesgranted",
        "cookieconsentuserdata",
        "cookiconsentpersonalization",
    ],
    "cookieyes": ["cookieyes-consent", "ckyes-consent", "cky-consent"],
    "cookiebot": ["cookiebot", "cookieconsent", "cookiebotconsent"],
    "cookieinformation": ["cookieinformation", "coi-consent", "cookieconsent"],
    "onetrust": ["optanonconsent", "optanonalertboxclosed", "onetrustconsent"],
    "termly": ["termly-consent", "termlyconsent"],
    "iubenda": ["iubenda", "iub-consent", "iubendaconsent"],
    "generic": ["consent", "cookie_consent", "cookieconsent", "gdpr_consent",
                "privacy_consent", "user_consent"],
}

GRANTED_VALUES = {"yes", "true", "1", "accepted", "granted", "allow"}
