from fastapi import APIRouter

router = APIRouter()


@router.get("/")
def root():
    return {
        "ok": True,
        "name": "Thesis Defense Evaluation API",
        "docs": "/docs",
        "health": "/health",
    }
