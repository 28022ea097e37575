from typing import Any, Callable

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from ..auth import get_optional_user
from ..database import get_db
from ..models import User
from ..services import chain_service

router = APIRouter(tags=["chains"])

ChainMutation = Callable[[Session, dict[str, Any], User], dict[str, Any]]

READ_OPERATIONS: tuple[str, ...] = (
    "list",
    "get",
    "get_incentives",
    "get_locations",
    "search",
    "find_match",
    "summary",
)
MUTATIONS: dict[str, ChainMutation] = {
    "create": chain_service.create_chain,
    "update": chain_service.update_chain,
    "delete": chain_service.delete_chain,
    "add_incentive": chain_service.add_incentive,
    "update_incentive": chain_service.update_incentive,
    "remove_incentive": chain_service.remove_incentive,
    "add_location": chain_service.add_location,
    "remove_location": chain_service.remove_location,
    "sync_locations": chain_service.sync_locations,
    "bulk_update_universal_incentives": chain_service.bulk_update_universal_incentives,
}
CREATED_OPERATIONS = frozenset({"create", "add_incentive"})
ALL_OPERATIONS: list[str] = [*READ_OPERATIONS, *MUTATIONS]


def _require_admin(user: User | None) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    if not user.has_admin_access:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _read(db: Session, operation: str, params: dict[str, str]) -> dict[str, Any]:
    if operation == "list":
        return chain_service.list_chains(db)
    if operation == "get":
        return chain_service.get_chain(db, params.get("id") or params.get("chain_id"))
    if operation == "get_incentives":
        return chain_service.get_incentives(db, params.get("chain_id"))
    if operation == "get_locations":
        return chain_service.get_locations(db, params.get("chain_id"))
    if operation == "search":
        return chain_service.search_chains(db, params.get("q") or params.get("query"), params.get("business_type"))
    if operation == "find_match":
        return chain_service.find_match(db, params.get("business_name"), params.get("business_type"))
    return chain_service.summary(db)


@router.get("/chains")
def chains_get(
    request: Request,
    operation: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    if operation is None:
        return {"message": "Chains API is available", "operations": ALL_OPERATIONS}
    if operation not in READ_OPERATIONS:
        raise HTTPException(status_code=400, detail="Invalid operation")
    return _read(db, operation, dict(request.query_params))


@router.api_route("/chains", methods=["POST", "PUT", "DELETE"])
def chains_mutate(
    request: Request,
    response: Response,
    operation: str | None = Query(default=None),
    body: dict[str, Any] | None = Body(default=None),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> dict:
    handler = MUTATIONS.get(operation or "")
    if handler is None:
        raise HTTPException(status_code=400, detail="Invalid operation")
    admin = _require_admin(user)

    data = {key: value for key, value in request.query_params.items() if key != "operation"}
    data.update(body or {})
    result = handler(db, data, admin)
    if operation in CREATED_OPERATIONS:
        response.status_code = 201
    return result
