# inspection_api/generic/varchar_code.py
#
# VARCHAR_CODE pattern: short client-chosen code as key, display name, is_active.
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from fastapi import APIRouter
from sqlalchemy import func, select

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import CODE_PATTERN, EntityConfig
from inspection_api.generic.controller import add_collection_routes, add_item_routes, service_provider
from inspection_api.generic.serial_id import NamedEntityModel, NamedEntityService, add_named_routes

_CODE_RE = re.compile(CODE_PATTERN)
NAME_MAX_LENGTH = 255


class VarcharCodeModel(NamedEntityModel):
    def find_by_code(self, code: str) -> Optional[Any]:
        stmt = select(self.model).where(func.lower(self.model.code) == code.strip().lower())
        with self._timed("find_by_code"):
            return self.db.execute(stmt).scalars().first()


class VarcharCodeService(NamedEntityService):
    def _code_errors(self, code: Any) -> List[str]:
        max_len = self.config.code_length or 10
        if not isinstance(code, str) or not code.strip():
            return ["code is required"]
        if len(code) > max_len:
            return [f"code must be between 1 and {max_len} characters"]
        if not _CODE_RE.match(code):
            return ["code may only contain letters, numbers, underscores and hyphens"]
        return []

    def check_rules(self, data: Dict[str, Any], creating: bool) -> List[str]:
        errors = super().check_rules(data, creating)
        if creating:
            errors.extend(self._code_errors(data.get("code")))
        if "name" in data or creating:
            name = data.get("name")
            if not isinstance(name, str) or not name.strip():
                errors.append("name is required")
            elif len(name) > NAME_MAX_LENGTH:
                errors.append(f"name must be between 1 and {NAME_MAX_LENGTH} characters")
        return errors

    def parse_keys(self, raw: Mapping[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        code = (raw.get("code") or "").strip()
        if self._code_errors(code):
            return None, "Invalid code provided"
        return {"code": code}, None

    def has_conflict(self, data: Dict[str, Any], exclude_keys: Optional[Mapping[str, Any]] = None) -> bool:
        # codes cannot change on update, so only a create can collide
        code = data.get("code")
        if exclude_keys is not None or not isinstance(code, str):
            return False
        return self.model.find_by_code(code) is not None

    def conflict_message(self, data: Dict[str, Any]) -> str:
        if data.get("code"):
            return f"{self.label} with code '{data['code']}' already exists"
        return super().conflict_message(data)


def build_varchar_code_router(
    registry: ModelRegistry,
    config: EntityConfig,
    model_cls: Type[VarcharCodeModel] = VarcharCodeModel,
    service_cls: Type[VarcharCodeService] = VarcharCodeService,
) -> APIRouter:
    provide = service_provider(registry, config, model_cls, service_cls, client_keys=True)
    router = APIRouter(tags=[config.entity_name])
    add_collection_routes(router, config, provide)
    add_named_routes(router, provide)
    add_item_routes(router, config, provide)
    return router
