from fastapi import APIRouter, Depends

from defense_eval.core.security import Actor, get_current_actor

router = APIRouter(tags=["auth"])


@router.get("/me")
def me(actor: Actor = Depends(get_current_actor)):
    """Current user with resolved role names"""
    user = actor.user
    return {
        "ok": True,
        "item": {
            "id": str(user.id),
            "email": user.email,
            "name": user.name,
            "is_active": user.is_active,
            "roles": sorted(actor.roles),
        },
    }
