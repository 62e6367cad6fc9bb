"""
Category hierarchy: slug, level and materialized path derivation.

Uniqueness is checked up front (slug probing, sibling name lookup) but those
checks race with concurrent creators. The unique indexes on `slug` and
`(parent_id, name)` decide; a DuplicateKeyError at insert time is mapped
back to the constraint that fired.
"""
import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database import to_object_id
from errors import CategoryNotFound, Duplicate, MaxLevelExceeded, ParentInactive, ParentNotFound
from schemas import MAX_CATEGORY_LEVEL, Category, CategoryCreate
from stores import CategoryStore

logger = logging.getLogger(__name__)

CATEGORY_DUPLICATE = "CATEGORY_DUPLICATE"
SLUG_FALLBACK = "category"

# letters NFKD does not decompose
_TRANSLITERATE = str.maketrans({"đ": "d", "Đ": "D", "ø": "o", "Ø": "O", "ł": "l", "Ł": "L", "ß": "ss", "æ": "ae", "Æ": "AE"})


def slugify(text: str) -> str:
    text = text.translate(_TRANSLITERATE)
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return text.strip("-")


def _name_conflict(message="Category with this name already exists in the same parent") -> Duplicate:
    return Duplicate(message, code=CATEGORY_DUPLICATE,
                     details={"field_errors": {"name": "Category name already exists under this parent"}})


def _slug_conflict() -> Duplicate:
    return Duplicate("Slug already exists", code=CATEGORY_DUPLICATE,
                     details={"field_errors": {"slug": "Slug already exists"}})


def classify_duplicate(exc: DuplicateKeyError) -> Duplicate:
    """Map a duplicate-key error from the category collection to the constraint that fired."""
    details = exc.details or {}
    fields = list((details.get("keyPattern") or {}).keys())
    if not fields:
        # older servers only name the index in the message
        msg = str(exc)
        if "index: slug_1" in msg:
            fields = ["slug"]
        elif "index: parent_id_1_name_1" in msg:
            fields = ["parent_id", "name"]
    if "slug" in fields:
        return _slug_conflict()
    if "name" in fields or "parent_id" in fields:
        return _name_conflict()
    return Duplicate("Category already exists", code=CATEGORY_DUPLICATE)


class CategoryService:
    def __init__(self, categories: CategoryStore):
        self.categories = categories

    def _free_slug(self, base: str) -> str:
        slug = base
        n = 1
        while self.categories.slug_exists(slug):
            slug = f"{base}-{n}"
            n += 1
        return slug

    def create_category(self, actor_id, data: CategoryCreate) -> Dict[str, Any]:
        name = data.name.strip()
        slug = self._free_slug(slugify(name) or SLUG_FALLBACK)

        parent_id = None
        level = 0
        path = slug
        if data.parent_id:
            parent_id = to_object_id(data.parent_id)
            parent = self.categories.find_by_id(parent_id)
            if not parent:
                raise ParentNotFound()
            if not parent.get("is_active", False):
                raise ParentInactive()
            level = parent["level"] + 1
            if level > MAX_CATEGORY_LEVEL:
                raise MaxLevelExceeded(f"Maximum category level ({MAX_CATEGORY_LEVEL}) exceeded")
            path = f"{parent['path']}/{slug}"

        if self.categories.find_sibling(parent_id, name):
            raise _name_conflict()

        description = data.description.strip() if data.description else None
        category = Category(
            name=name,
            slug=slug,
            parent_id=parent_id,
            level=level,
            path=path,
            description=description or None,
            is_active=data.is_active,
            sort_order=data.sort_order,
            created_by=to_object_id(actor_id),
        )
        try:
            doc = self.categories.insert(category)
        except DuplicateKeyError as e:
            logger.info("Category insert lost a uniqueness race: %s", e)
            raise classify_duplicate(e)

        logger.info("Category created: id=%s slug=%s level=%s by=%s", doc["_id"], slug, level, actor_id)
        return doc

    def list_categories(self, is_active: Optional[bool] = None, parent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Children of `parent_id`, or root categories when it is absent."""
        pid = to_object_id(parent_id) if parent_id else None
        return self.categories.find_all(is_active=is_active, parent_id=pid)

    def get_category(self, category_id) -> Dict[str, Any]:
        doc = self.categories.find_by_id(category_id)
        if not doc:
            raise CategoryNotFound()
        return doc

    def list_descendants(self, category_id, is_active: Optional[bool] = None) -> List[Dict[str, Any]]:
        category = self.get_category(category_id)
        return self.categories.find_descendants(category["path"], is_active=is_active)
