"""
Event mapper - translates source event names and payload shapes into the
canonical (upstream standard) vocabulary.

Unknown source names pass through unchanged: the gateway relays, it does not
gate on a closed vocabulary. Domain attributes are pulled out by one named
extraction rule per canonical event; every rule tolerates missing nested
fields by leaving the corresponding attribute out.
"""
import logging
from typing import Any, Callable, Optional

from pixelgate.schemas.canonical_event import MappedEvent

logger = logging.getLogger(__name__)

EVENT_NAME_MAP: dict[str, str] = {
    "page_viewed": "PageView",
    "product_viewed": "ViewContent",
    "collection_viewed": "ViewContent",
    "search_submitted": "Search",
    "product_added_to_cart": "AddToCart",
    "cart_viewed": "ViewCart",
    "checkout_started": "InitiateCheckout",
    "checkout_address_info_submitted": "AddShippingInfo",
    "payment_info_submitted": "AddPaymentInfo",
    "checkout_completed": "Purchase",
}

# Flat attribute names browser/server callers send, mapped to upstream custom_data keys
FLAT_ATTRIBUTES: dict[str, str] = {
    "value": "value",
    "currency": "currency",
    "contentIds": "content_ids",
    "content_ids": "content_ids",
    "contentName": "content_name",
    "content_name": "content_name",
    "contentType": "content_type",
    "content_type": "content_type",
    "contentCategory": "content_category",
    "content_category": "content_category",
    "numItems": "num_items",
    "num_items": "num_items",
    "orderId": "order_id",
    "order_id": "order_id",
    "searchString": "search_string",
    "search_string": "search_string",
}


def canonical_event_name(source_event_name: str) -> str:
    return EVENT_NAME_MAP.get(source_event_name, source_event_name)


# ---------------------------------------------------------------------------
# Defensive readers
# ---------------------------------------------------------------------------

def _dig(obj: Any, *path: str) -> Any:
    """Follow nested dict keys, returning None as soon as a level is missing."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


def _id_of(obj: Any) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    for key in ("id", "sku", "product_id"):
        value = obj.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _money(attrs: dict, money: Any) -> None:
    """Copy an {amount, currencyCode} money object into value/currency."""
    value = _to_float(_dig(money, "amount"))
    if value is not None:
        attrs["value"] = value
    currency = _dig(money, "currencyCode")
    if isinstance(currency, str) and currency:
        attrs["currency"] = currency


def _line_ids(lines: Any, *item_path: str) -> list[str]:
    if not isinstance(lines, list):
        return []
    ids = []
    for line in lines:
        item_id = _id_of(_dig(line, *item_path))
        if item_id:
            ids.append(item_id)
    return ids


def _event_data(payload: dict) -> dict:
    """Storefront events wrap their fields in `data`; direct callers do not."""
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


# ---------------------------------------------------------------------------
# Extraction rules, one per canonical event
# ---------------------------------------------------------------------------

def _extract_page_view(payload: dict) -> dict:
    # `context` sits beside `data` in storefront events
    attrs: dict = {}
    location = _dig(payload, "context", "document", "location", "href")
    if isinstance(location, str):
        attrs["page_location"] = location
    title = _dig(payload, "context", "document", "title")
    if isinstance(title, str):
        attrs["page_title"] = title
    return attrs


def _extract_view_content(payload: dict) -> dict:
    data = _event_data(payload)
    attrs: dict = {}
    variant = data.get("productVariant")
    if isinstance(variant, dict):
        attrs["content_type"] = "product"
        variant_id = _id_of(variant)
        if variant_id:
            attrs["content_ids"] = [variant_id]
        name = variant.get("title") or _dig(variant, "product", "title")
        if isinstance(name, str):
            attrs["content_name"] = name
        category = _dig(variant, "product", "type")
        if isinstance(category, str) and category:
            attrs["content_category"] = category
        _money(attrs, variant.get("price"))
        return attrs

    collection = data.get("collection")
    if isinstance(collection, dict):
        attrs["content_type"] = "product_group"
        collection_id = _id_of(collection)
        if collection_id:
            attrs["content_ids"] = [collection_id]
        if isinstance(collection.get("title"), str):
            attrs["content_name"] = collection["title"]
        variant_ids = _line_ids(collection.get("productVariants"))
        if variant_ids:
            attrs["contents_count"] = len(variant_ids)
    return attrs


def _extract_search(payload: dict) -> dict:
    data = _event_data(payload)
    query = _dig(data, "searchResult", "query")
    return {"search_string": query} if isinstance(query, str) and query else {}


def _extract_add_to_cart(payload: dict) -> dict:
    data = _event_data(payload)
    attrs: dict = {}
    line = data.get("cartLine")
    if not isinstance(line, dict):
        return attrs
    attrs["content_type"] = "product"
    merchandise = line.get("merchandise")
    item_id = _id_of(merchandise)
    if item_id:
        attrs["content_ids"] = [item_id]
    name = _dig(merchandise, "title") or _dig(merchandise, "product", "title")
    if isinstance(name, str):
        attrs["content_name"] = name
    _money(attrs, _dig(line, "cost", "totalAmount"))
    quantity = _to_int(line.get("quantity"))
    if quantity is not None:
        attrs["num_items"] = quantity
    return attrs


def _extract_view_cart(payload: dict) -> dict:
    data = _event_data(payload)
    attrs: dict = {}
    cart = data.get("cart")
    if not isinstance(cart, dict):
        return attrs
    attrs["content_type"] = "product"
    ids = _line_ids(cart.get("lines"), "merchandise")
    if ids:
        attrs["content_ids"] = ids
    _money(attrs, _dig(cart, "cost", "totalAmount"))
    quantity = _to_int(cart.get("totalQuantity"))
    if quantity is not None:
        attrs["num_items"] = quantity
    return attrs


def _extract_checkout(payload: dict) -> dict:
    data = _event_data(payload)
    attrs: dict = {}
    checkout = data.get("checkout")
    if not isinstance(checkout, dict):
        return attrs
    attrs["content_type"] = "product"
    line_items = checkout.get("lineItems")
    ids = _line_ids(line_items, "variant")
    if ids:
        attrs["content_ids"] = ids
    if isinstance(line_items, list):
        quantities = [_to_int(_dig(item, "quantity")) for item in line_items]
        attrs["num_items"] = sum(q for q in quantities if q is not None)
    _money(attrs, checkout.get("totalPrice"))
    if "currency" not in attrs and isinstance(checkout.get("currencyCode"), str):
        attrs["currency"] = checkout["currencyCode"]
    return attrs


def _extract_purchase(payload: dict) -> dict:
    attrs = _extract_checkout(payload)
    checkout = _event_data(payload).get("checkout")
    order_id = _id_of(_dig(checkout, "order")) or _id_of(checkout)
    if order_id:
        attrs["order_id"] = order_id
    return attrs


EXTRACTION_RULES: dict[str, Callable[[dict], dict]] = {
    "PageView": _extract_page_view,
    "ViewContent": _extract_view_content,
    "Search": _extract_search,
    "AddToCart": _extract_add_to_cart,
    "ViewCart": _extract_view_cart,
    "InitiateCheckout": _extract_checkout,
    "AddShippingInfo": _extract_checkout,
    "AddPaymentInfo": _extract_checkout,
    "Purchase": _extract_purchase,
}


# Storefront envelope keys; their contents are read by the extraction rules
_WRAPPER_KEYS = ("data", "context")


def _flat_attributes(payload: dict) -> dict:
    attrs: dict = {}
    for source_key, target_key in FLAT_ATTRIBUTES.items():
        if source_key in payload and payload[source_key] is not None:
            attrs[target_key] = payload[source_key]

    if "value" in attrs:
        value = _to_float(attrs["value"])
        if value is None:
            attrs.pop("value")
        else:
            attrs["value"] = value
    if "num_items" in attrs:
        count = _to_int(attrs["num_items"])
        if count is None:
            attrs.pop("num_items")
        else:
            attrs["num_items"] = count

    product_id = payload.get("productId")
    if "content_ids" not in attrs and product_id not in (None, ""):
        attrs["content_ids"] = [str(product_id)]
    if isinstance(attrs.get("content_ids"), list):
        attrs["content_ids"] = [str(i) for i in attrs["content_ids"] if i not in (None, "")]
    elif "content_ids" in attrs:
        attrs.pop("content_ids")
    return attrs


def _free_form_attributes(payload: dict) -> dict:
    """Caller keys the flat translation does not own, minus the storefront envelope."""
    owned = set(FLAT_ATTRIBUTES) | {"productId"} | set(_WRAPPER_KEYS)
    return {k: v for k, v in payload.items() if k not in owned}


def map_event(source_event_name: str, source_payload: Any) -> MappedEvent:
    """
    Map a source event to its canonical name and attribute set.

    Every attribute the caller sends is relayed (contents, predicted_ltv,
    merchant keys, ...). Known flat names are translated to upstream keys,
    and shape-specific values extracted from a storefront payload take
    precedence over both. Events without a rule (custom or future names)
    relay their attributes as given.
    """
    name = canonical_event_name(source_event_name)
    payload = source_payload if isinstance(source_payload, dict) else {}

    rule = EXTRACTION_RULES.get(name)
    if rule is None:
        attributes = dict(payload)
        attributes.update(_flat_attributes(payload))
    else:
        attributes = _free_form_attributes(payload)
        attributes.update(_flat_attributes(payload))
        attributes.update(rule(payload))

    if name != source_event_name:
        logger.debug("Mapped event %s -> %s", source_event_name, name)
    return MappedEvent(event_name=name, attributes=attributes)
