"""Plan catalogue endpoint."""
from fastapi import APIRouter

from app.api.dependencies import DbDep
from app.services.plan_catalog import PlanCatalog

from .schemas import PlanOut, PlansOut

router = APIRouter()


@router.get("/plans", response_model=PlansOut)
def list_plans(db: DbDep):
    """Active plans in display order."""
    return PlansOut(plans=[PlanOut.from_plan(p) for p in PlanCatalog(db).list_plans()])
