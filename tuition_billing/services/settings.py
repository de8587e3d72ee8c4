"""Effective settings resolution and administration"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
from tuition_billing.domain.exceptions import SettingValidationError
from tuition_billing.domain.models import EffectiveSetting, SettingScope
from tuition_billing.domain.settings import (
    SETTINGS_KEYS,
    get_definition,
    parse_by_type,
    validate_and_normalize,
)
from tuition_billing.infrastructure.database.repositories import SettingsRepository
from tuition_billing.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class SettingsResolver:
    """
    Resolve settings through branch -> global -> code default precedence.

    A resolver reads from the session it was built with and keeps no cache, so
    each job invocation or request constructs its own.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = SettingsRepository(db)

    def get_effective_settings(
        self,
        keys: Optional[Iterable[str]] = None,
        branch_id: Optional[int] = None,
    ) -> Dict[str, EffectiveSetting]:
        """
        Effective value for each requested key.

        Raises:
            UnknownSettingError: a key has no definition
        """
        requested: List[str] = list(keys) if keys is not None else list(SETTINGS_KEYS)
        definitions = {key: get_definition(key) for key in requested}

        branch_rows = self.repo.rows_by_key(requested, branch_id) if branch_id is not None else {}
        global_rows = self.repo.rows_by_key(requested, None)

        effective: Dict[str, EffectiveSetting] = {}
        for key, definition in definitions.items():
            row = branch_rows.get(key)
            scope = SettingScope.BRANCH
            if row is None:
                row = global_rows.get(key)
                scope = SettingScope.GLOBAL

            if row is None:
                value = definition.default
                scope = SettingScope.DEFAULT
            else:
                value = parse_by_type(row.setting_value, definition.type, definition.default)

            effective[key] = EffectiveSetting(
                key=key,
                value=value,
                scope=scope,
                type=definition.type,
                category=definition.category,
                description=definition.description,
            )

        return effective

    def get_value(self, key: str, branch_id: Optional[int] = None) -> Any:
        return self.get_effective_settings([key], branch_id)[key].value

    def update_settings(
        self,
        scope: SettingScope,
        branch_id: Optional[int],
        values: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, EffectiveSetting]:
        """
        Validate and upsert a batch of settings for one scope.

        Every value is validated before the first write, so a bad entry leaves
        the stored settings untouched. Returns the effective settings for the
        updated keys as seen from the target scope.

        Raises:
            SettingValidationError: bad scope, missing branch_id, or invalid value
            UnknownSettingError: a key has no definition
        """
        try:
            scope = SettingScope(scope)
        except ValueError:
            raise SettingValidationError(f"Unsupported settings scope: {scope}")

        if scope == SettingScope.BRANCH:
            if branch_id is None:
                raise SettingValidationError("branch_id is required for branch scope")
            target_branch = branch_id
        elif scope == SettingScope.GLOBAL:
            target_branch = None
        else:
            raise SettingValidationError(f"Unsupported settings scope: {scope}")

        if not values:
            raise SettingValidationError("No settings provided")

        normalized = [validate_and_normalize(key, value) for key, value in values.items()]

        now = utcnow()
        for item in normalized:
            self.repo.upsert(
                key=item.key,
                stored_value=item.stored_value,
                setting_type=item.type,
                category=item.category,
                description=item.description,
                branch_id=target_branch,
                updated_by=updated_by,
                updated_at=now,
            )

        logger.info(
            "Settings updated",
            extra={
                "scope": scope.value,
                "branch_id": target_branch,
                "keys": [item.key for item in normalized],
                "updated_by": updated_by,
            },
        )
        return self.get_effective_settings([item.key for item in normalized], target_branch)
