from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import secrets

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..models import Account

router = APIRouter(prefix="/auth", tags=["auth"])

logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

logger = logging.getLogger(__name__)


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str
	role: str = "student"


def hash_password(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')[:72]
	return pwd_context.hash(password_bytes.decode('utf-8', errors='ignore'))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	password_bytes = plain_password.encode('utf-8')[:72]
	return pwd_context.verify(password_bytes.decode('utf-8', errors='ignore'), hashed_password)


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	row = db.get(Account, username)
	if row and verify_password(password, row.password_hash):
		return User(username=row.username, role=row.role)
	return None


def ensure_seed_admin(db: Session) -> None:
	username = settings.seed_admin_username
	password = settings.seed_admin_password
	if not username or not password or db.get(Account, username) is not None:
		return
	db.add(Account(username=username, password_hash=hash_password(password), role="admin", full_name=username))
	db.commit()
	logger.info("Created bootstrap admin account %s", username)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	delta = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
	to_encode.update({"exp": datetime.now(timezone.utc) + delta})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	return Token(access_token=create_access_token({"sub": user.username, "role": user.role}))


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		username: str | None = payload.get("sub")
		if username is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# Accounts deleted by an admin lose access even with a live token
	row = db.get(Account, username)
	if row is None:
		raise credentials_exception
	return User(username=row.username, role=row.role)


def require_admin(user: User = Depends(get_current_user)) -> User:
	if user.role != "admin":
		raise HTTPException(status_code=403, detail="admin access required")
	return user


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


class CreateStudentRequest(BaseModel):
	full_name: str
	password: str = Field(min_length=6)
	grade: int = Field(ge=1, le=12)
	class_section: Optional[str] = None
	roll_number: Optional[str] = None
	student_id: Optional[str] = None


class CreateStudentResponse(BaseModel):
	success: bool = True
	student_id: str
	message: str = "Student created successfully"


def generate_student_id() -> str:
	return f"STU{secrets.token_hex(3).upper()}{secrets.token_hex(2).upper()}"


@router.post("/students", status_code=201, response_model=CreateStudentResponse)
async def create_student(req: CreateStudentRequest, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
	full_name = (req.full_name or "").strip()
	if not full_name:
		raise HTTPException(status_code=400, detail="full_name is required")
	student_id = (req.student_id or "").strip() or generate_student_id()
	if db.get(Account, student_id) is not None:
		raise HTTPException(status_code=409, detail="student id already exists")
	db.add(Account(
		username=student_id,
		password_hash=hash_password(req.password),
		role="student",
		full_name=full_name,
		grade=req.grade,
		class_section=req.class_section,
		roll_number=req.roll_number,
		created_by=admin.username,
	))
	db.commit()
	logger.info("Admin %s created student %s", admin.username, student_id)
	return CreateStudentResponse(student_id=student_id)
