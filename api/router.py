from fastapi import APIRouter
from api.endpoints import evaluate, ground_truth, health, result, upload

api_router = APIRouter()

for module, tag in (
    (upload, "upload"),
    (evaluate, "evaluation"),
    (result, "evaluation"),
    (ground_truth, "ground-truth"),
    (health, "health"),
):
    api_router.include_router(module.router, tags=[tag])
