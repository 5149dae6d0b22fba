# schemas.py
from pydantic import BaseModel, EmailStr, Field, constr
from datetime import date, datetime
from typing import List, Literal, Optional


class UserBase(BaseModel):
    email: EmailStr


class UserCreate(UserBase):
    name: Optional[constr(max_length=100)] = None
    password: constr(min_length=6)


class UserLogin(UserBase):
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PasswordChange(BaseModel):
    current_password: str
    new_password: constr(min_length=6)


class ProfileUpdate(BaseModel):
    name: Optional[constr(max_length=100)] = None
    email: Optional[EmailStr] = None


class UserResponse(BaseModel):
    id: int
    name: Optional[str] = None
    email: str
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CategorySchema(BaseModel):
    name: constr(min_length=1, max_length=50)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class CategoryResponse(CategorySchema):
    id: int
    user_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class Expense(BaseModel):
    description: constr(min_length=1, max_length=255)
    amount: float = Field(..., gt=0)
    date: date
    category_id: int


class ExpenseResponse(Expense):
    id: int
    user_id: int
    created_at: datetime
    category: CategoryResponse

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ExpensePage(BaseModel):
    expenses: List[ExpenseResponse]
    pagination: Pagination


BudgetPeriod = Literal["weekly", "monthly", "yearly"]


class BudgetSchema(BaseModel):
    category_id: int
    amount: float = Field(..., gt=0)
    name: Optional[str] = None
    period: BudgetPeriod = "monthly"


class BudgetResponse(BudgetSchema):
    id: int
    user_id: int
    created_at: datetime
    category: CategoryResponse

    class Config:
        from_attributes = True


class ThresholdCreate(BaseModel):
    budget_id: int
    threshold: int
    type: str = "email"
    enabled: bool = True


class ThresholdUpdate(BaseModel):
    threshold: Optional[int] = None
    type: Optional[str] = None
    enabled: Optional[bool] = None


class ThresholdResponse(BaseModel):
    id: int
    budget_id: int
    threshold: int
    type: str
    enabled: bool
    created_at: datetime
    budget: BudgetResponse

    class Config:
        from_attributes = True


GoalPriority = Literal["low", "medium", "high"]
GoalStatus = Literal["active", "completed", "paused"]


class GoalSchema(BaseModel):
    title: constr(min_length=1, max_length=100)
    description: Optional[str] = None
    target_amount: float = Field(..., gt=0)
    current_amount: float = Field(0.0, ge=0)
    target_date: date
    priority: GoalPriority = "medium"


class GoalUpdate(GoalSchema):
    current_amount: Optional[float] = Field(None, ge=0)
    priority: Optional[GoalPriority] = None
    status: Optional[GoalStatus] = None


class GoalResponse(GoalSchema):
    id: int
    user_id: int
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ThresholdProgress(BaseModel):
    id: int
    threshold: int
    type: str
    enabled: bool


class BudgetSummary(BaseModel):
    id: int
    name: str
    amount: float
    category: str


class BudgetProgress(BaseModel):
    budget: BudgetSummary
    total_spent: float
    percentage: int
    thresholds: List[ThresholdProgress]


class NotificationOutcome(BaseModel):
    budget_id: int
    budget_name: str
    threshold_id: int
    threshold: int
    percentage: int
    success: bool


class BudgetCheckResponse(BaseModel):
    success: bool = True
    checked: int
    notifications_sent: int
    notifications: List[NotificationOutcome]


class CategoryTrend(BaseModel):
    category: str
    month: str
    total: float

    class Config:
        from_attributes = True
