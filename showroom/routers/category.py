# showroom/routers/category.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from showroom.crud.category import CategoryRepository, build_category_tree
from showroom.routers.deps import get_category_repo, require_admin
from showroom.schemas.category import (
    CategoryCreate,
    CategoryRead,
    CategoryTree,
    CategoryTreeNode,
    CategoryUpdate,
)
from showroom.services.admin_session import AdminSession

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get(
    "",
    response_model=list[CategoryRead],
    summary="List categories (flat, ordered by name)",
)
def list_categories(response: Response, repo: CategoryRepository = Depends(get_category_repo)):
    items = repo.list_categories()
    response.headers["X-Total-Count"] = str(len(items))
    return items


@router.get(
    "/tree",
    response_model=CategoryTree,
    summary="Categories grouped as parents with their subcategories",
    description="Without the parent_id column every category is top-level and `hierarchy` is false.",
)
def category_tree(repo: CategoryRepository = Depends(get_category_repo)):
    nodes, orphans = build_category_tree(repo.list_categories())
    items = [
        CategoryTreeNode(
            **CategoryRead.model_validate(node.category).model_dump(),
            children=[CategoryRead.model_validate(c) for c in node.children],
        )
        for node in nodes
    ]
    return CategoryTree(
        items=items,
        orphans=[CategoryRead.model_validate(c) for c in orphans],
        hierarchy=repo.caps.category_hierarchy,
    )


@router.get(
    "/{category_id}",
    response_model=CategoryRead,
    summary="Get category by id",
)
def get_category(category_id: str, repo: CategoryRepository = Depends(get_category_repo)):
    return repo.get_category(category_id)


@router.get(
    "/{category_id}/children",
    response_model=list[CategoryRead],
    summary="List direct subcategories",
)
def list_children(category_id: str, repo: CategoryRepository = Depends(get_category_repo)):
    repo.get_category(category_id)
    return repo.list_subcategories(category_id)


@router.post(
    "",
    response_model=CategoryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create category",
)
def create_category(
    payload: CategoryCreate,
    repo: CategoryRepository = Depends(get_category_repo),
    _admin: AdminSession = Depends(require_admin),
):
    return repo.create_category(payload.name, payload.parent_id)


@router.put(
    "/{category_id}",
    response_model=CategoryRead,
    summary="Update category",
    description="Renaming does not touch products, which reference categories by name.",
)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    repo: CategoryRepository = Depends(get_category_repo),
    _admin: AdminSession = Depends(require_admin),
):
    return repo.update_category(category_id, payload.model_dump(exclude_unset=True))


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete category",
    description="409 while subcategories or products still reference it.",
)
def delete_category(
    category_id: str,
    repo: CategoryRepository = Depends(get_category_repo),
    _admin: AdminSession = Depends(require_admin),
):
    repo.delete_category(category_id)
    return None
