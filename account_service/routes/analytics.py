from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..analytics import AnalyticsService
from ..auth import get_user
from ..db import get_session
from ..errors import failure_message
from ..models import as_utc, utcnow

router = APIRouter(prefix="/analytics", tags=["analytics"])


def get_analytics(user=Depends(get_user), session: Session = Depends(get_session)) -> AnalyticsService:
    return AnalyticsService(session, user)


@router.get("/spending-by-category")
def spending_by_category(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    analytics: AnalyticsService = Depends(get_analytics),
):
    with failure_message("Failed to get spending data"):
        end = as_utc(end_date) if end_date else utcnow()
        start = as_utc(start_date) if start_date else end - timedelta(days=30)
        return {
            "data": analytics.spending_by_category(start, end),
            "period": {"startDate": start, "endDate": end},
        }


@router.get("/income-vs-expenses")
def income_vs_expenses(period: str = Query(default="month", pattern="^(day|week|month)$"),
                       analytics: AnalyticsService = Depends(get_analytics)):
    with failure_message("Failed to get income vs expenses data"):
        return {"data": analytics.income_vs_expenses(period), "period": period}


@router.get("/balance-trends")
def balance_trends(analytics: AnalyticsService = Depends(get_analytics)):
    with failure_message("Failed to get balance trends"):
        return {"data": analytics.balance_trends()}


@router.get("/insights")
def insights(analytics: AnalyticsService = Depends(get_analytics)):
    with failure_message("Failed to generate insights"):
        return {"insights": analytics.insights()}


@router.get("/predictions")
def predictions(analytics: AnalyticsService = Depends(get_analytics)):
    with failure_message("Failed to get predictions"):
        return {"predictions": analytics.predictions()}


@router.get("/dashboard-stats")
def dashboard_stats(analytics: AnalyticsService = Depends(get_analytics)):
    with failure_message("Failed to get dashboard statistics"):
        return analytics.dashboard()
