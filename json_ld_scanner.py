"""
json_ld_scanner.py - JSON-LD structured data detection.

The browser hands back the raw text of every
<script type="application/ld+json"> block; parsing and validation
happen here so a broken block never hides the others.  A block may
hold one schema object or an array of them.
"""

import json

from errors import ExtractionError

# Parse errors keep this much of the offending block.
ERROR_CONTENT_CHARS = 200

_JSON_LD_JS = """
() => Array.from(document.querySelectorAll('script[type="application/ld+json"]'))
    .map(s => s.textContent || s.innerHTML || '')
"""


def empty_json_ld_info():
    return {
        "found": False,
        "scripts": [],
        "schemas": [],
        "types": [],
        "errors": [],
    }


def describe_schema(schema, index, schema_index):
    """Summarise one schema object from block `index`."""
    context = schema.get("@context")
    info = {
        "index": index,
        "schema_index": schema_index,
        "type": schema.get("@type") or "Unknown",
        "context": context,
        "id": schema.get("@id"),
        "properties": [key for key in schema if not key.startswith("@")],
        "is_valid": True,
        "schema_org": isinstance(context, str) and "schema.org" in context,
    }
    # Without either key it is plain JSON, not linked data.
    if not context and not schema.get("@type"):
        info["is_valid"] = False
        info["validation_error"] = "Missing @context or @type"
    return info


def _add_types(types, schema_type):
    for name in schema_type if isinstance(schema_type, list) else [schema_type]:
        if isinstance(name, str) and name not in types:
            types.append(name)


def parse_json_ld(blocks):
    """
    Parse the text of each JSON-LD block.

    Returns {"found", "scripts", "schemas", "types", "errors"}.  found is
    True as soon as the page has a JSON-LD tag, even an unparseable one;
    types is deduplicated in first-seen order.
    """
    info = empty_json_ld_info()
    if not blocks:
        return info
    info["found"] = True

    for index, text in enumerate(blocks):
        if not text or not text.strip():
            continue
        try:
            parsed = json.loads(text)
        except ValueError as e:
            info["errors"].append({
                "index": index,
                "error": f"JSON parse error: {e}",
                "content": text[:ERROR_CONTENT_CHARS],
            })
            continue

        for schema_index, schema in enumerate(parsed if isinstance(parsed, list) else [parsed]):
            if not isinstance(schema, dict):
                info["errors"].append({
                    "index": index,
                    "error": f"Processing error: expected an object, got {type(schema).__name__}",
                })
                continue
            schema_info = describe_schema(schema, index, schema_index)
            info["schemas"].append(schema_info)
            _add_types(info["types"], schema_info["type"])
            info["scripts"].append({
                "index": index,
                "content": text,
                "parsed": schema,
            })

    return info


def scan_json_ld(page_evaluate):
    """
    Collect and parse the page's JSON-LD blocks.

    Raises ExtractionError when the page cannot be read.
    """
    try:
        blocks = page_evaluate(_JSON_LD_JS) or []
    except Exception as e:
        raise ExtractionError(f"Could not read JSON-LD scripts: {e}") from e

    info = parse_json_ld(blocks)
    print(f"[*] JSON-LD: {len(info['schemas'])} schema(s), "
          f"{len(info['types'])} type(s): {', '.join(info['types']) or 'none'}")
    if info["errors"]:
        print(f"[!] {len(info['errors'])} JSON-LD block(s) could not be parsed")
    return info
