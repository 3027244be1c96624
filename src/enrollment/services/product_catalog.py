"""Static product catalog used when Stripe carries no course list.

Maps checkout product IDs to the ClickFunnels courses and membership level
they grant.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    name: str
    membership_level: str
    course_ids: tuple[str, ...] = field(default_factory=tuple)


PRODUCTS: dict[str, CatalogProduct] = {
    p.id: p
    for p in (
        CatalogProduct(
            id="coaching-basic",
            name="Basis Coaching Pakket",
            membership_level="basic",
            course_ids=("basic-course-1",),
        ),
        CatalogProduct(
            id="coaching-premium",
            name="Premium Coaching Pakket",
            membership_level="premium",
            course_ids=("premium-course-1", "premium-course-2"),
        ),
        CatalogProduct(
            id="coaching-vip",
            name="VIP Coaching Pakket",
            membership_level="vip",
            course_ids=("vip-course-1", "vip-course-2", "vip-course-3"),
        ),
        CatalogProduct(
            id="12-weken-vetverlies",
            name="12-Weken Vetverlies Programma",
            membership_level="vetverlies",
            course_ids=("eWbLVk", "vgDnxN", "JMaGxK"),
        ),
    )
}


def get_product(product_id: str | None) -> CatalogProduct | None:
    if not product_id:
        return None
    return PRODUCTS.get(product_id)


def get_course_ids(product_id: str | None) -> list[str]:
    """Course IDs granted by a catalog product, empty if unknown."""
    product = get_product(product_id)
    return list(product.course_ids) if product else []
