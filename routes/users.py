import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, Path, Request, Response, UploadFile
from pymongo.database import Database

import config
import mailer
import storage
from auth import (
    assert_self_or_admin,
    create_access_token,
    get_current_user,
    hash_password,
    is_admin,
    is_supplier,
    require_admin,
    require_backend_user,
    token_from_request,
    user_from_token,
    verify_password,
)
from database import create_document, get_db, update_document
from helpers import (
    escape_regex,
    exact_name_regex,
    facet_page,
    generate_token,
    join_url,
    now,
    parse_object_id,
    parse_object_ids,
    serialize_doc,
    supplier_info,
    unpack_facet,
)
from routes.cars import delete_car_cascade
from schemas import (
    ActivatePayload,
    ChangePasswordPayload,
    CreateUserPayload,
    EmailPayload,
    GetUsersPayload,
    SendEmailPayload,
    SignInPayload,
    SignUpPayload,
    UpdateEmailNotificationsPayload,
    UpdateLanguagePayload,
    UpdateUserPayload,
    User,
    UserType,
    ValidateSupplierPayload,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])


def _find_user(db: Database, user_id: Any) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "user id")})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _can_manage_user(current: Dict[str, Any], user: Dict[str, Any]) -> bool:
    """Admins manage everyone, a user itself, a supplier its drivers."""
    if is_admin(current) or current["_id"] == user["_id"]:
        return True
    return is_supplier(current) and current["_id"] in (user.get("suppliers") or [])


def create_activation_token(db: Database, user_id: Any) -> str:
    token = generate_token()
    create_document("token", {"user": user_id, "token": token, "expire_at": now()}, database=db)
    return token


def send_activation_email(db: Database, user: Dict[str, Any], reset: bool = False) -> bool:
    """Mail an activation (or password reset) link carrying a fresh token."""
    token = create_activation_token(db, user["_id"])
    host = config.FRONTEND_HOST if user.get("type") == UserType.USER.value else config.BACKEND_HOST
    page = "reset-password" if reset else "activate"
    link = join_url(host, f"{page}?u={user['_id']}&e={user['email']}&t={token}")

    if reset:
        subject = "Reset your password"
        lines = ["You asked to reset your password. Follow the link below to choose a new one."]
    else:
        subject = "Activate your account"
        lines = ["Your account has been created. Follow the link below to activate it and set your password."]

    html = mailer.render("message", hello=f"Hello {user.get('full_name', '')},", lines=lines, link=link)
    return mailer.send_mail(user["email"], subject, html)


def _move_avatar(user_id: Any, avatar: Optional[str]) -> Optional[str]:
    if not avatar:
        return None
    if storage.exists(config.CDN_USERS, avatar):
        return avatar
    return storage.move_temp_file(config.CDN_TEMP_USERS, config.CDN_USERS, avatar, f"{user_id}_{avatar}")


def _session(user: Dict[str, Any], stay_connected: bool = False) -> Dict[str, Any]:
    expires = timedelta(days=365) if stay_connected else None
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "full_name": user.get("full_name"),
        "language": user.get("language"),
        "type": user.get("type"),
        "avatar": user.get("avatar"),
        "blacklisted": user.get("blacklisted", False),
        "access_token": create_access_token(str(user["_id"]), expires),
    }


@router.post("/sign-up")
def sign_up(payload: SignUpPayload, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=email,
        full_name=payload.full_name,
        phone=payload.phone,
        language=payload.language,
        birth_date=payload.birth_date,
        national_id=payload.national_id,
        active=True,
        type=UserType.USER,
    ).model_dump()
    user["password"] = hash_password(payload.password)
    user_id = parse_object_id(create_document("user", user, database=db))

    send_activation_email(db, db["user"].find_one({"_id": user_id}))
    logger.info(f"User signed up: {user_id}")
    return {"id": str(user_id)}


@router.post("/sign-in")
def sign_in(payload: SignInPayload, backend: bool = False, db: Database = Depends(get_db)):
    """Exchange credentials for an access token. backend=true only admits admins and suppliers."""
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.get("blacklisted"):
        raise HTTPException(status_code=403, detail="User is blacklisted")
    if backend and user.get("type") not in (UserType.ADMIN.value, UserType.SUPPLIER.value):
        raise HTTPException(status_code=403, detail="Back-office access required")
    return _session(user, payload.stay_connected)


@router.post("/validate-access-token")
def validate_access_token(request: Request, db: Database = Depends(get_db)):
    user = user_from_token(db, token_from_request(request))
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return {"id": str(user["_id"])}


@router.get("/check-token/{user_id}/{token}")
def check_token(user_id: str, token: str, db: Database = Depends(get_db)):
    """200 when the activation token belongs to the user, 204 otherwise."""
    _id = parse_object_id(user_id, "user id")
    if db["token"].find_one({"user": _id, "token": token}):
        return Response(status_code=200)
    return Response(status_code=204)


@router.post("/activate")
def activate(payload: ActivatePayload, db: Database = Depends(get_db)):
    user = _find_user(db, payload.user_id)
    token = db["token"].find_one({"user": user["_id"], "token": payload.token})
    if not token:
        raise HTTPException(status_code=400, detail="Invalid token")

    update_document("user", user["_id"], {
        "password": hash_password(payload.password),
        "active": True,
        "verified": True,
        "verified_at": now(),
        "expire_at": None,
    }, database=db)
    db["token"].delete_many({"user": user["_id"]})
    return _session(db["user"].find_one({"_id": user["_id"]}))


@router.post("/resend-link")
def resend_link(payload: EmailPayload, reset: bool = False, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("verified") and not reset:
        raise HTTPException(status_code=400, detail="Account already activated")
    db["token"].delete_many({"user": user["_id"]})
    return {"sent": send_activation_email(db, user, reset=reset)}


@router.post("/validate-email")
def validate_email(payload: EmailPayload, db: Database = Depends(get_db)):
    return {"exists": db["user"].find_one({"email": payload.email.lower()}) is not None}


@router.post("/create-user")
def create_user(
    payload: CreateUserPayload,
    current: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    if not is_admin(current) and payload.type != UserType.USER.value:
        raise HTTPException(status_code=403, detail="Suppliers can only create drivers")
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    values = User(**payload.model_dump(exclude={"avatar", "password", "supplier"}), active=True).model_dump()
    values["password"] = hash_password(payload.password) if payload.password else None
    values["verified"] = bool(payload.password) or payload.verified
    values["avatar"] = None
    if payload.supplier:
        values["suppliers"] = [parse_object_id(payload.supplier, "supplier id")]
    elif is_supplier(current):
        values["suppliers"] = [current["_id"]]

    user_id = parse_object_id(create_document("user", values, database=db))

    avatar = _move_avatar(user_id, payload.avatar)
    if avatar:
        update_document("user", user_id, {"avatar": avatar}, database=db)

    user = db["user"].find_one({"_id": user_id})
    if not payload.password:
        send_activation_email(db, user)

    logger.info(f"User created: {user_id} ({payload.type})")
    return serialize_doc(user)


@router.put("/update-user")
def update_user(
    payload: UpdateUserPayload,
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = _find_user(db, payload.id)
    if not _can_manage_user(current, user):
        raise HTTPException(status_code=403, detail="Not allowed")

    values = payload.model_dump(exclude={"id"}, exclude_none=True)
    if "type" in values and not is_admin(current):
        values.pop("type")
    if "contracts" in values and not (is_admin(current) or current["_id"] == user["_id"]):
        values.pop("contracts")
    values["full_name"] = payload.full_name.strip()

    update_document("user", user["_id"], values, database=db)
    return serialize_doc(db["user"].find_one({"_id": user["_id"]}))


@router.post("/change-password")
def change_password(
    payload: ChangePasswordPayload,
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = _find_user(db, payload.id)
    assert_self_or_admin(current, user["_id"])
    if payload.strict and not verify_password(payload.password or "", user.get("password")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    update_document("user", user["_id"], {"password": hash_password(payload.new_password)}, database=db)
    return {"ok": True}


@router.post("/update-email-notifications")
def update_email_notifications(
    payload: UpdateEmailNotificationsPayload,
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = _find_user(db, payload.id)
    assert_self_or_admin(current, user["_id"])
    update_document(
        "user", user["_id"], {"enable_email_notifications": payload.enable_email_notifications}, database=db
    )
    return {"ok": True}


@router.post("/update-language")
def update_language(
    payload: UpdateLanguagePayload,
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = _find_user(db, payload.id)
    assert_self_or_admin(current, user["_id"])
    update_document("user", user["_id"], {"language": payload.language.lower()}, database=db)
    return {"ok": True}


@router.get("/user/{user_id}")
def get_user(user_id: str, current: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    user = _find_user(db, user_id)
    if not _can_manage_user(current, user):
        raise HTTPException(status_code=403, detail="Not allowed")
    return serialize_doc(user)


@router.post("/users/{page}/{size}")
def get_users(
    payload: GetUsersPayload,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    current: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    """Users of the given types; a supplier only sees the drivers that booked with it."""
    keyword = escape_regex(s)
    match: Dict[str, Any] = {
        "type": {"$in": list(payload.types)},
        "expire_at": None,
        "$or": [
            {"full_name": {"$regex": keyword, "$options": "i"}},
            {"email": {"$regex": keyword, "$options": "i"}},
        ],
    }
    if is_supplier(current):
        match["type"] = UserType.USER.value
        match["suppliers"] = current["_id"]
    elif payload.user:
        match["suppliers"] = parse_object_id(payload.user, "supplier id")

    pipeline = [
        {"$match": match},
        {"$project": {"password": 0}},
        facet_page(page, size, {"full_name": 1, "_id": 1}),
    ]
    return unpack_facet(list(db["user"].aggregate(pipeline)))


def delete_user_cascade(db: Database, user: Dict[str, Any]) -> None:
    """Delete a user with what hangs off it: a supplier's cars, a driver's bookings, avatars."""
    if user.get("type") == UserType.SUPPLIER.value:
        for car in list(db["car"].find({"supplier": user["_id"]})):
            delete_car_cascade(db, car)
        db["booking"].delete_many({"supplier": user["_id"]})
    else:
        bookings = list(db["booking"].find({"driver": user["_id"]}, {"additional_driver_id": 1}))
        driver_ids = [b["additional_driver_id"] for b in bookings if b.get("additional_driver_id")]
        if driver_ids:
            db["additional_driver"].delete_many({"_id": {"$in": driver_ids}})
        db["booking"].delete_many({"driver": user["_id"]})

    if user.get("avatar"):
        storage.delete_file(config.CDN_USERS, user["avatar"])
    db["notification"].delete_many({"user": user["_id"]})
    db["notification_counter"].delete_many({"user": user["_id"]})
    db["push_token"].delete_many({"user": user["_id"]})
    db["token"].delete_many({"user": user["_id"]})
    db["user"].delete_one({"_id": user["_id"]})


@router.post("/delete-users", dependencies=[Depends(require_admin)])
def delete_users(ids: List[str] = Body(..., min_length=1), db: Database = Depends(get_db)):
    deleted = 0
    for user in list(db["user"].find({"_id": {"$in": parse_object_ids(ids, "user id")}})):
        delete_user_cascade(db, user)
        deleted += 1
    logger.info(f"Deleted {deleted} users")
    return {"deleted": deleted}


@router.post("/create-avatar")
def create_avatar(image: UploadFile = File(...)):
    try:
        return storage.save_temp_image(config.CDN_TEMP_USERS, image.filename or "avatar", image.file.read())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/update-avatar/{user_id}")
def update_avatar(
    user_id: str,
    image: UploadFile = File(...),
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = _find_user(db, user_id)
    if not _can_manage_user(current, user):
        raise HTTPException(status_code=403, detail="Not allowed")
    try:
        filename = storage.save_image(config.CDN_USERS, str(user["_id"]), image.file.read())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if user.get("avatar"):
        storage.delete_file(config.CDN_USERS, user["avatar"])
    update_document("user", user["_id"], {"avatar": filename}, database=db)
    return filename


@router.post("/delete-avatar/{user_id}")
def delete_avatar(user_id: str, current: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    user = _find_user(db, user_id)
    if not _can_manage_user(current, user):
        raise HTTPException(status_code=403, detail="Not allowed")
    if user.get("avatar"):
        storage.delete_file(config.CDN_USERS, user["avatar"])
    update_document("user", user["_id"], {"avatar": None}, database=db)
    return {"ok": True}


@router.post("/delete-temp-avatar/{avatar}")
def delete_temp_avatar(avatar: str):
    try:
        storage.check_filename(avatar)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    storage.delete_file(config.CDN_TEMP_USERS, avatar)
    return {"ok": True}


@router.post("/create-license")
def create_license(file: UploadFile = File(...)):
    """Temporary license or id document, moved to the licenses folder at checkout."""
    try:
        return storage.save_temp_file(config.CDN_TEMP_LICENSES, file.filename or "license", file.file.read())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/delete-temp-license/{filename}")
def delete_temp_license(filename: str):
    try:
        storage.check_filename(filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    storage.delete_file(config.CDN_TEMP_LICENSES, filename)
    return {"ok": True}


@router.get("/suppliers/{page}/{size}")
def get_suppliers(
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Suppliers with their car count."""
    pipeline = [
        {"$match": {"type": UserType.SUPPLIER.value, "full_name": {"$regex": escape_regex(s), "$options": "i"}}},
        {"$lookup": {"from": "car", "localField": "_id", "foreignField": "supplier", "as": "cars"}},
        {"$project": {"password": 0}},
        facet_page(page, size, {"full_name": 1, "_id": 1}),
    ]
    result = unpack_facet(list(db["user"].aggregate(pipeline)))
    for supplier in result["result_data"]:
        supplier["car_count"] = len(supplier.pop("cars", []) or [])
    return result


@router.get("/all-suppliers")
def get_all_suppliers(db: Database = Depends(get_db)):
    cursor = db["user"].find({"type": UserType.SUPPLIER.value}).sort([("full_name", 1), ("_id", 1)])
    return [serialize_doc(supplier_info(u)) for u in cursor]


@router.post("/validate-supplier")
def validate_supplier(payload: ValidateSupplierPayload, db: Database = Depends(get_db)):
    supplier = db["user"].find_one({"type": UserType.SUPPLIER.value, "full_name": exact_name_regex(payload.full_name)})
    return {"exists": supplier is not None}


@router.post("/send-email")
def send_email(payload: SendEmailPayload):
    """Contact form: forward the visitor's message to the admin mailbox."""
    to = config.ADMIN_EMAIL if payload.is_contact_form else payload.to or config.ADMIN_EMAIL
    if not to:
        raise HTTPException(status_code=400, detail="No recipient")

    lines = [f"From: {payload.from_address}"] if payload.is_contact_form else []
    lines.extend(payload.message.splitlines() or [payload.message])
    html = mailer.render("message", hello="Hello,", lines=lines, link=None)
    return {"sent": mailer.send_mail(to, payload.subject, html)}
