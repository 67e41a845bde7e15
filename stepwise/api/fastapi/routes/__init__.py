from fastapi import APIRouter

from . import admin, attachment, execution, history, review, user, workflow


def register_routes(router: APIRouter):
    router.include_router(user.router)
    router.include_router(admin.router)
    router.include_router(workflow.router)
    router.include_router(execution.router)
    router.include_router(attachment.router)
    router.include_router(review.router)
    router.include_router(history.router)
