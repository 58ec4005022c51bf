"""
Category Registry

Each owner sees the system defaults plus the categories they added.
Defaults are permanent. User categories can be added, renamed and
removed:

- rename rewrites the owner's transactions of the same type in the same
  batch as the registry change
- remove only touches the registry; records keep the old name

Card purchases are not rewritten by a rename. They keep the literal
category they were recorded with.
"""

from typing import Optional
from uuid import UUID

from ledger_engine.engine.base import EngineBase
from ledger_engine.errors import NotFoundError, ValidationError
from ledger_engine.models.records import (
    CATEGORY_MAX_LENGTH,
    DEFAULT_CATEGORIES,
    Categories,
    CategorySet,
    PutOp,
    TransactionType,
    merge_categories,
)
from ledger_engine.engine.series import apply_changes
from ledger_engine.validation import require_owner


class CategoryRegistry(EngineBase):
    """Per-owner category lists on top of the system defaults."""

    async def ensure_initialized(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> CategorySet:
        """
        Create the owner's empty category set if it does not exist yet.

        Safe to call any number of times.
        """
        require_owner(owner_id)
        existing = await self._store.get_category_set(owner_id)
        if existing is not None:
            return existing

        correlation_id = self._correlation(correlation_id)
        category_set = CategorySet(owner_id=owner_id)
        await self._commit(
            owner_id, "ensure_initialized", [PutOp(record=category_set)], correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log_category_changed(
                owner_id=owner_id,
                action="initialized",
                category_type="all",
                name="defaults",
                correlation_id=correlation_id,
            )
        return category_set

    async def list_categories(self, owner_id: str) -> Categories:
        """Defaults then user additions, per type. Never writes."""
        require_owner(owner_id)
        category_set = await self._store.get_category_set(owner_id)
        return Categories(
            income=merge_categories(
                TransactionType.INCOME,
                category_set.income if category_set else [],
            ),
            expense=merge_categories(
                TransactionType.EXPENSE,
                category_set.expense if category_set else [],
            ),
        )

    async def _require_set(self, owner_id: str) -> CategorySet:
        category_set = await self._store.get_category_set(owner_id)
        if category_set is None:
            raise NotFoundError(
                f"Categories for owner {owner_id} are not initialized"
            )
        return category_set

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Category name cannot be empty")
        if len(cleaned) > CATEGORY_MAX_LENGTH:
            raise ValidationError(
                f"Category name cannot exceed {CATEGORY_MAX_LENGTH} characters"
            )
        return cleaned

    @staticmethod
    def _is_default(tx_type: TransactionType, name: str) -> bool:
        return name in DEFAULT_CATEGORIES[tx_type]

    @staticmethod
    def _ensure_unique(existing: list[str], name: str) -> None:
        lowered = name.casefold()
        if any(c.casefold() == lowered for c in existing):
            raise ValidationError(f"Category '{name}' already exists")

    @staticmethod
    def _with_list(
        category_set: CategorySet,
        tx_type: TransactionType,
        names: list[str],
    ) -> CategorySet:
        return apply_changes(category_set, {tx_type.value: names})

    async def add(
        self,
        owner_id: str,
        tx_type: TransactionType,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> Categories:
        """
        Add a user category.

        Raises:
            ValidationError: If the name is empty or already exists
                (case-insensitive, defaults included)
            NotFoundError: If the owner was never initialized
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)
        try:
            cleaned = self._clean_name(name)
            category_set = await self._require_set(owner_id)
            user_added = category_set.for_type(tx_type)
            self._ensure_unique(merge_categories(tx_type, user_added), cleaned)
        except (ValidationError, NotFoundError) as e:
            await self._rejected(owner_id, "add_category", e, correlation_id)
            raise

        updated = self._with_list(category_set, tx_type, user_added + [cleaned])
        await self._commit(owner_id, "add_category", [PutOp(record=updated)], correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_category_changed(
                owner_id=owner_id,
                action="added",
                category_type=tx_type.value,
                name=cleaned,
                correlation_id=correlation_id,
            )
        return await self.list_categories(owner_id)

    async def rename(
        self,
        owner_id: str,
        tx_type: TransactionType,
        old_name: str,
        new_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Rename a user category and every transaction of that type using it.

        Returns:
            Number of transactions rewritten

        Raises:
            ValidationError: If old_name is a default or new_name is
                empty or already taken
            NotFoundError: If old_name is not a user category
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)
        try:
            cleaned = self._clean_name(new_name)
            if self._is_default(tx_type, old_name):
                raise ValidationError(
                    f"'{old_name}' is a default category and cannot be renamed"
                )
            category_set = await self._require_set(owner_id)
            user_added = category_set.for_type(tx_type)
            if old_name not in user_added:
                raise NotFoundError(f"Category '{old_name}' not found")
            others = [c for c in merge_categories(tx_type, user_added) if c != old_name]
            self._ensure_unique(others, cleaned)
        except (ValidationError, NotFoundError) as e:
            await self._rejected(owner_id, "rename_category", e, correlation_id)
            raise

        renamed = [cleaned if c == old_name else c for c in user_added]
        affected = await self._store.query_transactions(
            owner_id, tx_type=tx_type, category=old_name
        )
        ops = [PutOp(record=self._with_list(category_set, tx_type, renamed))]
        ops.extend(
            PutOp(record=apply_changes(tx, {"category": cleaned})) for tx in affected
        )
        await self._commit(owner_id, "rename_category", ops, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_category_changed(
                owner_id=owner_id,
                action="renamed",
                category_type=tx_type.value,
                name=old_name,
                correlation_id=correlation_id,
                new_name=cleaned,
                cascaded=len(affected),
            )
        return len(affected)

    async def remove(
        self,
        owner_id: str,
        tx_type: TransactionType,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> Categories:
        """
        Remove a user category from the registry.

        Records already using it are left as they are.
        """
        require_owner(owner_id)
        correlation_id = self._correlation(correlation_id)
        try:
            if self._is_default(tx_type, name):
                raise ValidationError(
                    f"'{name}' is a default category and cannot be removed"
                )
            category_set = await self._require_set(owner_id)
            user_added = category_set.for_type(tx_type)
            if name not in user_added:
                raise NotFoundError(f"Category '{name}' not found")
        except (ValidationError, NotFoundError) as e:
            await self._rejected(owner_id, "remove_category", e, correlation_id)
            raise

        updated = self._with_list(
            category_set, tx_type, [c for c in user_added if c != name]
        )
        await self._commit(owner_id, "remove_category", [PutOp(record=updated)], correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_category_changed(
                owner_id=owner_id,
                action="removed",
                category_type=tx_type.value,
                name=name,
                correlation_id=correlation_id,
            )
        return await self.list_categories(owner_id)


__all__ = ["CategoryRegistry"]
