import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from errors import InvalidHierarchy, NotFound, SelfParent
from models import Category


logger = logging.getLogger(__name__)


class CategoryHierarchy:
    """Keeps categories at most one level deep."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def validate_parent(
        self, candidate_parent_id: int, self_id: Optional[int] = None
    ) -> Category:
        if self_id is not None and candidate_parent_id == self_id:
            logger.warning(f"hierarchy_rejected: category={self_id} reason=self_parent")
            raise SelfParent("Category cannot be its own parent")

        parent = self.session.get(Category, candidate_parent_id)
        if parent is None:
            raise NotFound("Parent category not found")
        if parent.parent_id is not None:
            logger.warning(
                f"hierarchy_rejected: parent={candidate_parent_id} reason=depth"
            )
            raise InvalidHierarchy("Nested categories beyond one level are not allowed")
        return parent

    def has_children(self, category_id: int) -> bool:
        stmt = select(func.count(Category.id)).where(Category.parent_id == category_id)
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def resolve_for(
        self, category_id: Optional[int], parent_id: Optional[int]
    ) -> Optional[Category]:
        """Validate ``parent_id`` for a new or existing category.

        A category that already has children may not become a child itself,
        otherwise its children would end up two levels deep.
        """
        if parent_id is None:
            return None
        parent = self.validate_parent(parent_id, category_id)
        if category_id is not None and self.has_children(category_id):
            raise InvalidHierarchy("A category with subcategories cannot have a parent")
        return parent
