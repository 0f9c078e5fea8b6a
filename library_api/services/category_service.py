import logging
from typing import List, Optional

from .. import database
from ..errors import ConflictError, DuplicateKeyError, NotFoundError
from ..models import Category, utcnow
from ..repositories import categories
from ..validators import TextValidator

logger = logging.getLogger(__name__)


class CategoryService:
    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def list_categories(self) -> List[Category]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return categories.list_active(conn)

    def list_with_book_count(self) -> List[Category]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return categories.list_with_book_count(conn)

    def get_category(self, category_id: int) -> Optional[Category]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return categories.get_by_id(conn, category_id)

    def is_name_unique(self, name: str, exclude_id: Optional[int] = None) -> bool:
        with database.transaction(self.db_file, readonly=True) as conn:
            return categories.is_name_unique(conn, name.strip(), exclude_id)

    def book_count(self, category_id: int) -> int:
        with database.transaction(self.db_file, readonly=True) as conn:
            if categories.get_by_id(conn, category_id) is None:
                raise NotFoundError(f"Category with ID {category_id} not found.")
            return categories.book_count(conn, category_id)

    def create_category(self, category: Category) -> Category:
        category.name = TextValidator.require(category.name, "Category name")
        category.description = TextValidator.clean(category.description)
        category.created_at = utcnow()
        category.is_active = True
        with database.transaction(self.db_file) as conn:
            if not categories.is_name_unique(conn, category.name):
                raise DuplicateKeyError(f"Category with name '{category.name}' already exists.")
            category_id = categories.insert(conn, category)
            created = categories.get_by_id(conn, category_id)
        logger.info("Category %s created (%s)", category_id, created.name)
        return created

    def update_category(self, category: Category) -> Category:
        category.name = TextValidator.require(category.name, "Category name")
        category.description = TextValidator.clean(category.description)
        with database.transaction(self.db_file) as conn:
            existing = categories.get_by_id(conn, category.id)
            if existing is None:
                raise NotFoundError(f"Category with ID {category.id} not found.")
            if not categories.is_name_unique(conn, category.name, exclude_id=category.id):
                raise DuplicateKeyError(f"Category with name '{category.name}' already exists.")
            existing.name = category.name
            existing.description = category.description
            categories.update(conn, existing)
        return existing

    def delete_category(self, category_id: int) -> None:
        """Soft delete; refused while active books reference the category."""
        with database.transaction(self.db_file) as conn:
            if categories.get_by_id(conn, category_id) is None:
                raise NotFoundError(f"Category with ID {category_id} not found.")
            count = categories.book_count(conn, category_id)
            if count > 0:
                logger.warning("Refusing to delete category %s with %s active book(s)", category_id, count)
                raise ConflictError(
                    f"Cannot delete category with ID {category_id}. It has {count} active book(s)."
                )
            categories.set_active(conn, category_id, False)
        logger.info("Category %s deactivated", category_id)
