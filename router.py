from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from database import (
    get_db,
    Budget,
    Category,
    Expense,
    Goal,
    NotificationThreshold,
    User,
)
from schemas import (
    BudgetProgress,
    BudgetResponse,
    BudgetSchema,
    CategoryResponse,
    CategorySchema,
    CategoryTrend,
    Expense as ExpenseSchema,
    ExpensePage,
    ExpenseResponse,
    GoalResponse,
    GoalSchema,
    GoalUpdate,
    ProfileUpdate,
    ThresholdCreate,
    ThresholdResponse,
    ThresholdUpdate,
    UserResponse,
)
from auth import get_current_user
from budget_monitor import BudgetNotFoundError, get_budget_progress
from datetime import datetime, date
from typing import Optional
import csv
import json
import math
from io import StringIO


router = APIRouter()

ALLOWED_THRESHOLD_TYPES = ["email"]


def _get_owned(db: Session, model, object_id: int, user: User, label: str):
    instance = (
        db.query(model).filter(model.id == object_id, model.user_id == user.id).first()
    )
    if not instance:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return instance


def _validate_threshold(threshold: Optional[int], type_: Optional[str]):
    if threshold is not None and not 1 <= threshold <= 100:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Threshold must be between 1 and 100",
        )
    if type_ is not None and type_ not in ALLOWED_THRESHOLD_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only email notifications are supported",
        )


# profile
@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    profile: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if profile.email is not None:
        email = profile.email.lower()
        taken = (
            db.query(User).filter(User.email == email, User.id != current_user.id).first()
        )
        if taken:
            raise HTTPException(status_code=400, detail="Email already in use")
        current_user.email = email
    if profile.name is not None:
        current_user.name = profile.name.strip() or None

    db.commit()
    db.refresh(current_user)
    return current_user


# categories
@router.get("/categories", response_model=list[CategoryResponse])
async def get_categories(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Category)
        .filter(Category.user_id == current_user.id)
        .order_by(Category.name)
        .all()
    )


@router.post(
    "/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED
)
async def create_category(
    category: CategorySchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    name = category.name.strip().lower()
    existing = (
        db.query(Category)
        .filter(Category.user_id == current_user.id, Category.name == name)
        .first()
    )
    if existing:
        raise HTTPException(status_code=400, detail="Category name already exists")

    db_category = Category(
        user_id=current_user.id,
        name=name,
        description=category.description,
        color=category.color,
        icon=category.icon,
    )
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category


@router.get("/categories/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _get_owned(db, Category, category_id, current_user, "Category")


@router.put("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    category: CategorySchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_category = _get_owned(db, Category, category_id, current_user, "Category")

    name = category.name.strip().lower()
    conflicting = (
        db.query(Category)
        .filter(
            Category.user_id == current_user.id,
            Category.name == name,
            Category.id != category_id,
        )
        .first()
    )
    if conflicting:
        raise HTTPException(status_code=400, detail="Category name already exists")

    db_category.name = name
    db_category.description = category.description
    db_category.color = category.color
    db_category.icon = category.icon
    db.commit()
    db.refresh(db_category)
    return db_category


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_category = _get_owned(db, Category, category_id, current_user, "Category")
    db.delete(db_category)
    db.commit()
    return {"message": "Category deleted successfully"}


# expenses
@router.get("/expenses", response_model=ExpensePage)
async def get_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=1000),
    category: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Expense).filter(Expense.user_id == current_user.id)
    if category is not None:
        query = query.filter(Expense.category_id == category)
    if start_date and end_date:
        query = query.filter(Expense.date >= start_date, Expense.date <= end_date)

    total = query.count()
    expenses = (
        query.options(joinedload(Expense.category))
        .order_by(Expense.date.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "expenses": expenses,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


@router.post(
    "/expenses", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED
)
async def create_expense(
    expense: ExpenseSchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _get_owned(db, Category, expense.category_id, current_user, "Category")

    db_expense = Expense(
        user_id=current_user.id,
        category_id=expense.category_id,
        description=expense.description,
        amount=expense.amount,
        date=expense.date,
    )
    db.add(db_expense)
    db.commit()
    db.refresh(db_expense)
    return db_expense


@router.get("/expenses/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _get_owned(db, Expense, expense_id, current_user, "Expense")


@router.put("/expenses/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: int,
    expense: ExpenseSchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_expense = _get_owned(db, Expense, expense_id, current_user, "Expense")
    _get_owned(db, Category, expense.category_id, current_user, "Category")

    db_expense.description = expense.description
    db_expense.amount = expense.amount
    db_expense.date = expense.date
    db_expense.category_id = expense.category_id
    db.commit()
    db.refresh(db_expense)
    return db_expense


@router.delete("/expenses/{expense_id}")
async def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = _get_owned(db, Expense, expense_id, current_user, "Expense")
    db.delete(expense)
    db.commit()
    return {"message": "Expense deleted successfully"}


# budgets
def _check_budget_category(db: Session, budget: BudgetSchema, user: User, exclude_id=None):
    _get_owned(db, Category, budget.category_id, user, "Category")

    query = db.query(Budget).filter(
        Budget.user_id == user.id, Budget.category_id == budget.category_id
    )
    if exclude_id is not None:
        query = query.filter(Budget.id != exclude_id)
    if query.first():
        raise HTTPException(
            status_code=400, detail="Budget already exists for this category"
        )


@router.get("/budgets", response_model=list[BudgetResponse])
async def get_budgets(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Budget)
        .options(joinedload(Budget.category))
        .filter(Budget.user_id == current_user.id)
        .order_by(Budget.created_at.desc(), Budget.id.desc())
        .all()
    )


@router.post("/budgets", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
async def create_budget(
    budget: BudgetSchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_budget_category(db, budget, current_user)

    db_budget = Budget(
        user_id=current_user.id,
        category_id=budget.category_id,
        amount=budget.amount,
        name=budget.name or None,
        period=budget.period,
    )
    db.add(db_budget)
    db.commit()
    db.refresh(db_budget)
    return db_budget


@router.get("/budgets/{budget_id}", response_model=BudgetResponse)
async def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _get_owned(db, Budget, budget_id, current_user, "Budget")


@router.get("/budgets/{budget_id}/progress", response_model=BudgetProgress)
async def get_budget_progress_endpoint(
    budget_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return get_budget_progress(db, current_user.id, budget_id)
    except BudgetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.put("/budgets/{budget_id}", response_model=BudgetResponse)
async def update_budget(
    budget_id: int,
    budget: BudgetSchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_budget = _get_owned(db, Budget, budget_id, current_user, "Budget")
    _check_budget_category(db, budget, current_user, exclude_id=budget_id)

    db_budget.category_id = budget.category_id
    db_budget.amount = budget.amount
    db_budget.name = budget.name or None
    db_budget.period = budget.period
    db.commit()
    db.refresh(db_budget)
    return db_budget


@router.delete("/budgets/{budget_id}")
async def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_budget = _get_owned(db, Budget, budget_id, current_user, "Budget")
    db.delete(db_budget)
    db.commit()
    return {"message": "Budget deleted successfully"}


# notification thresholds
@router.get("/notification-thresholds", response_model=list[ThresholdResponse])
async def get_thresholds(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(NotificationThreshold)
        .filter(NotificationThreshold.user_id == current_user.id)
        .order_by(NotificationThreshold.created_at.desc(), NotificationThreshold.id.desc())
        .all()
    )


@router.post(
    "/notification-thresholds",
    response_model=ThresholdResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_threshold(
    threshold: ThresholdCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _validate_threshold(threshold.threshold, threshold.type)
    _get_owned(db, Budget, threshold.budget_id, current_user, "Budget")

    existing = (
        db.query(NotificationThreshold)
        .filter(
            NotificationThreshold.budget_id == threshold.budget_id,
            NotificationThreshold.threshold == threshold.threshold,
            NotificationThreshold.type == threshold.type,
        )
        .first()
    )
    if existing:
        raise HTTPException(
            status_code=400,
            detail="Notification threshold already exists for this budget and percentage",
        )

    db_threshold = NotificationThreshold(
        user_id=current_user.id,
        budget_id=threshold.budget_id,
        threshold=threshold.threshold,
        type=threshold.type,
        enabled=threshold.enabled,
    )
    db.add(db_threshold)
    db.commit()
    db.refresh(db_threshold)
    return db_threshold


@router.put("/notification-thresholds/{threshold_id}", response_model=ThresholdResponse)
async def update_threshold(
    threshold_id: int,
    update: ThresholdUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_threshold = _get_owned(
        db, NotificationThreshold, threshold_id, current_user, "Notification threshold"
    )
    _validate_threshold(update.threshold, update.type)

    new_value = update.threshold if update.threshold is not None else db_threshold.threshold
    new_type = update.type if update.type is not None else db_threshold.type
    conflicting = (
        db.query(NotificationThreshold)
        .filter(
            NotificationThreshold.budget_id == db_threshold.budget_id,
            NotificationThreshold.threshold == new_value,
            NotificationThreshold.type == new_type,
            NotificationThreshold.id != threshold_id,
        )
        .first()
    )
    if conflicting:
        raise HTTPException(
            status_code=400,
            detail="Notification threshold already exists for this budget and percentage",
        )

    for field, value in update.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(db_threshold, field, value)
    db.commit()
    db.refresh(db_threshold)
    return db_threshold


@router.delete("/notification-thresholds/{threshold_id}")
async def delete_threshold(
    threshold_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_threshold = _get_owned(
        db, NotificationThreshold, threshold_id, current_user, "Notification threshold"
    )
    db.delete(db_threshold)
    db.commit()
    return {"message": "Notification threshold deleted successfully"}


# goals
@router.get("/goals", response_model=list[GoalResponse])
async def get_goals(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Goal)
        .filter(Goal.user_id == current_user.id)
        .order_by(Goal.created_at.desc(), Goal.id.desc())
        .all()
    )


@router.post("/goals", response_model=GoalResponse, status_code=status.HTTP_201_CREATED)
async def create_goal(
    goal: GoalSchema,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_goal = Goal(
        user_id=current_user.id,
        title=goal.title,
        description=goal.description or None,
        target_amount=goal.target_amount,
        current_amount=goal.current_amount,
        target_date=goal.target_date,
        priority=goal.priority,
    )
    db.add(db_goal)
    db.commit()
    db.refresh(db_goal)
    return db_goal


@router.put("/goals/{goal_id}", response_model=GoalResponse)
async def update_goal(
    goal_id: int,
    goal: GoalUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_goal = _get_owned(db, Goal, goal_id, current_user, "Goal")

    db_goal.title = goal.title
    db_goal.description = goal.description or None
    db_goal.target_amount = goal.target_amount
    db_goal.target_date = goal.target_date
    # omitted fields keep their stored values
    if goal.current_amount is not None:
        db_goal.current_amount = goal.current_amount
    if goal.priority is not None:
        db_goal.priority = goal.priority
    if goal.status is not None:
        db_goal.status = goal.status
    db.commit()
    db.refresh(db_goal)
    return db_goal


@router.delete("/goals/{goal_id}")
async def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_goal = _get_owned(db, Goal, goal_id, current_user, "Goal")
    db.delete(db_goal)
    db.commit()
    return {"message": "Goal deleted successfully"}


# analytics and export
@router.get("/analytics/category-trends", response_model=list[CategoryTrend])
async def get_category_trends(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = (
        db.query(Category.name, Expense.date, Expense.amount)
        .join(Category, Expense.category_id == Category.id)
        .filter(Expense.user_id == current_user.id)
    )
    if start_date:
        query = query.filter(Expense.date >= start_date)
    if end_date:
        query = query.filter(Expense.date <= end_date)

    # grouped in Python so the month key does not depend on a dialect's date functions
    totals = {}
    for name, spent_on, amount in query.all():
        key = (spent_on.strftime("%Y-%m"), name)
        totals[key] = totals.get(key, 0.0) + amount

    return [
        {"category": name, "month": month, "total": round(total, 2)}
        for (month, name), total in sorted(totals.items())
    ]


def _isoformat(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _row(instance, fields):
    return {name: _isoformat(getattr(instance, name)) for name in fields}


CATEGORY_FIELDS = ("id", "name", "description", "color", "icon", "created_at", "updated_at")
CATEGORY_BRIEF_FIELDS = ("id", "name", "color", "icon")
EXPENSE_FIELDS = ("id", "description", "amount", "date", "category_id", "created_at")
BUDGET_FIELDS = ("id", "name", "amount", "period", "category_id", "created_at")
GOAL_FIELDS = (
    "id",
    "title",
    "description",
    "target_amount",
    "current_amount",
    "target_date",
    "priority",
    "status",
    "created_at",
    "updated_at",
)


@router.get("/user/export")
async def export_user_data(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    categories = (
        db.query(Category)
        .filter(Category.user_id == current_user.id)
        .order_by(Category.created_at, Category.id)
        .all()
    )
    expenses = (
        db.query(Expense)
        .options(joinedload(Expense.category))
        .filter(Expense.user_id == current_user.id)
        .order_by(Expense.date.desc(), Expense.id.desc())
        .all()
    )
    budgets = (
        db.query(Budget)
        .options(joinedload(Budget.category))
        .filter(Budget.user_id == current_user.id)
        .order_by(Budget.created_at, Budget.id)
        .all()
    )
    goals = (
        db.query(Goal)
        .filter(Goal.user_id == current_user.id)
        .order_by(Goal.created_at, Goal.id)
        .all()
    )

    export = {
        "exported_at": datetime.now().isoformat(),
        "user": _row(current_user, ("id", "name", "email", "image", "created_at", "updated_at")),
        "statistics": {
            "total_categories": len(categories),
            "total_expenses": len(expenses),
            "total_expenses_value": sum(e.amount for e in expenses),
            "total_budgets": len(budgets),
            "total_budgets_value": sum(b.amount for b in budgets),
            "total_goals": len(goals),
            "total_goals_value": sum(g.target_amount for g in goals),
        },
        "categories": [_row(c, CATEGORY_FIELDS) for c in categories],
        "expenses": [
            {**_row(e, EXPENSE_FIELDS), "category": _row(e.category, CATEGORY_BRIEF_FIELDS)}
            for e in expenses
        ],
        "budgets": [
            {**_row(b, BUDGET_FIELDS), "category": _row(b.category, CATEGORY_BRIEF_FIELDS)}
            for b in budgets
        ],
        "goals": [_row(g, GOAL_FIELDS) for g in goals],
    }

    filename = f"expense-data-{date.today().isoformat()}.json"
    return Response(
        content=json.dumps(export, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export-report")
async def export_financial_report(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Exports financial report as CSV containing:
    - All expenses
    - Category-wise totals
    """
    expenses = (
        db.query(Expense)
        .options(joinedload(Expense.category))
        .filter(Expense.user_id == current_user.id)
        .order_by(Expense.date, Expense.id)
        .all()
    )

    csv_data = StringIO()
    writer = csv.writer(csv_data)

    writer.writerow(["Date", "Category", "Description", "Amount"])
    for e in expenses:
        writer.writerow([e.date.isoformat(), e.category.name, e.description, e.amount])

    writer.writerow([])
    writer.writerow(["Category", "Total Spending"])

    category_totals = (
        db.query(Category.name, func.sum(Expense.amount).label("total"))
        .join(Expense, Expense.category_id == Category.id)
        .filter(Expense.user_id == current_user.id)
        .group_by(Category.name)
        .order_by(Category.name)
        .all()
    )
    for category, total in category_totals:
        writer.writerow([category, total])

    csv_data.seek(0)

    return StreamingResponse(
        iter([csv_data.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=user_{current_user.id}_financial_report.csv"
        },
    )
