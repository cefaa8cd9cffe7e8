from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_session_context, SessionContext
from ..database import get_db
from ..errors import AppError
from ..models import Favorite, Farmer, Listing
from ..schemas import FavoritesOut, FavoriteStateOut
from ..serializers import to_favorite_out
from ..utils import as_uuid, notify


router = APIRouter(prefix="/favorites", tags=["favorites"])

_TARGETS = {
    "listings": (Listing, Favorite.listing_id, "listing_id"),
    "farmers": (Farmer, Favorite.farmer_id, "farmer_id"),
}


def _target(db: Session, kind: str, target_id: str):
    model, _, _ = _TARGETS[kind]
    tid = as_uuid(target_id)
    obj = db.get(model, tid) if tid else None
    if obj is None:
        raise AppError(f"{kind[:-1]}_not_found", f"{kind[:-1].capitalize()} not found", 404)
    return obj


def _existing(db: Session, ctx: SessionContext, kind: str, target_uuid) -> Favorite | None:
    _, column, _ = _TARGETS[kind]
    return db.query(Favorite).filter(Favorite.user_id == ctx.user_id, column == target_uuid).one_or_none()


def _add(db: Session, ctx: SessionContext, kind: str, target_id: str) -> FavoriteStateOut:
    obj = _target(db, kind, target_id)
    fav = _existing(db, ctx, kind, obj.id)
    if fav is None:
        _, _, attr = _TARGETS[kind]
        fav = Favorite(user_id=ctx.user_id, **{attr: obj.id})
        db.add(fav)
        db.flush()
        notify("favorite.added", {"user_id": str(ctx.user_id), kind[:-1]: str(obj.id)})
    return FavoriteStateOut(favorited=True, favorite_id=str(fav.id))


def _remove(db: Session, ctx: SessionContext, kind: str, target_id: str) -> FavoriteStateOut:
    tid = as_uuid(target_id)
    fav = _existing(db, ctx, kind, tid) if tid else None
    if fav is not None:
        db.delete(fav)
        db.flush()
        notify("favorite.removed", {"user_id": str(ctx.user_id), kind[:-1]: str(tid)})
    return FavoriteStateOut(favorited=False)


@router.get("", response_model=FavoritesOut)
def list_favorites(ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    favs = (
        db.query(Favorite)
        .filter(Favorite.user_id == ctx.user_id)
        .order_by(Favorite.created_at.desc())
        .limit(200)
        .all()
    )
    return FavoritesOut(
        listings=[to_favorite_out(f) for f in favs if f.listing_id is not None],
        farmers=[to_favorite_out(f) for f in favs if f.farmer_id is not None],
    )


@router.get("/{kind}/{target_id}", response_model=FavoriteStateOut)
def favorite_state(kind: str, target_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    if kind not in _TARGETS:
        raise AppError("not_found", "Not found", 404)
    tid = as_uuid(target_id)
    fav = _existing(db, ctx, kind, tid) if tid else None
    return FavoriteStateOut(favorited=fav is not None, favorite_id=str(fav.id) if fav else None)


@router.post("/{kind}/{target_id}", response_model=FavoriteStateOut)
def add_favorite(kind: str, target_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    if kind not in _TARGETS:
        raise AppError("not_found", "Not found", 404)
    return _add(db, ctx, kind, target_id)


@router.delete("/{kind}/{target_id}", response_model=FavoriteStateOut)
def remove_favorite(kind: str, target_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    if kind not in _TARGETS:
        raise AppError("not_found", "Not found", 404)
    return _remove(db, ctx, kind, target_id)


@router.post("/{kind}/{target_id}/toggle", response_model=FavoriteStateOut)
def toggle_favorite(kind: str, target_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    if kind not in _TARGETS:
        raise AppError("not_found", "Not found", 404)
    tid = as_uuid(target_id)
    if tid is not None and _existing(db, ctx, kind, tid) is not None:
        return _remove(db, ctx, kind, target_id)
    return _add(db, ctx, kind, target_id)


@router.delete("/{favorite_id}")
def remove_favorite_by_id(favorite_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    fid = as_uuid(favorite_id)
    fav = db.get(Favorite, fid) if fid else None
    if fav is None or fav.user_id != ctx.user_id:
        raise AppError("favorite_not_found", "Favorite not found", 404)
    db.delete(fav)
    db.flush()
    return {"detail": "ok"}
