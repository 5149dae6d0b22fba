from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
import logging
import jwt
from passlib.context import CryptContext
from config import settings
from database import get_db, User, Category
from schemas import UserCreate, UserLogin, Token, PasswordChange

logger = logging.getLogger(__name__)

auth_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

DEFAULT_CATEGORIES = [
    {"name": "food", "description": "Groceries and dining out", "color": "#F59E0B", "icon": "🍕"},
    {"name": "transportation", "description": "Gas, public transport, rideshare", "color": "#3B82F6", "icon": "🚗"},
    {"name": "entertainment", "description": "Movies, games, subscriptions", "color": "#8B5CF6", "icon": "🎬"},
    {"name": "shopping", "description": "Clothing, electronics, general shopping", "color": "#EC4899", "icon": "🛍️"},
    {"name": "bills", "description": "Utilities, rent, phone, internet", "color": "#EF4444", "icon": "📄"},
    {"name": "healthcare", "description": "Medical, dental, pharmacy", "color": "#10B981", "icon": "🏥"},
    {"name": "education", "description": "Books, courses, training", "color": "#6366F1", "icon": "📚"},
    {"name": "travel", "description": "Vacations, hotels, flights", "color": "#F97316", "icon": "✈️"},
    {"name": "home", "description": "Home improvement, furniture", "color": "#84CC16", "icon": "🏠"},
    {"name": "other", "description": "Miscellaneous expenses", "color": "#6B7280", "icon": "💰"},
]


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.access_token_expire_minutes
    )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


def create_default_categories(db: Session, user: User):
    for category in DEFAULT_CATEGORIES:
        db.add(Category(user_id=user.id, **category))
    logger.info("Created default categories for user %s", user.id)


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        subject: str = payload.get("sub")
        if subject is None or not subject.isdigit():
            raise credentials_exception
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise credentials_exception

    user = db.get(User, int(subject))
    if user is None:
        raise credentials_exception
    return user


@auth_router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(user: UserCreate, db: Session = Depends(get_db)):
    email = user.email.lower()
    db_user = db.query(User).filter(User.email == email).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    new_user = User(name=user.name, email=email, password_hash=hash_password(user.password))
    db.add(new_user)
    db.flush()
    create_default_categories(db, new_user)
    db.commit()

    access_token = create_access_token(data={"sub": str(new_user.id)})
    return Token(access_token=access_token)


@auth_router.post("/login", response_model=Token)
async def login(user: UserLogin, db: Session = Depends(get_db)):
    email = user.email.lower()
    db_user = db.query(User).filter(User.email == email).first()
    if not db_user or not verify_password(user.password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access_token = create_access_token(data={"sub": str(db_user.id)})
    return Token(access_token=access_token)


@auth_router.put("/change-password")
async def change_password(
    payload: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, current_user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise HTTPException(
            status_code=400,
            detail="New password must be different from the current password",
        )

    current_user.password_hash = hash_password(payload.new_password)
    db.commit()
    return {"message": "Password changed successfully"}
