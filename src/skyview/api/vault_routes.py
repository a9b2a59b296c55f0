# Vault API - REST and WebSocket endpoints for the local vault
#
# - Initialize / unlock / lock / change master password
# - Items, folders, trash and settings
# - Live listings over /api/vault/ws
#
# Every endpoint requires the session token. Vault errors map to HTTP
# statuses in vault_error_handler; a locked vault answers 423 everywhere.

import asyncio
import base64
import binascii
import contextlib
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..services import SkyViewServices
from ..vault import (
    AuthError,
    CyclicMove,
    FolderDepthExceeded,
    LocationLimitReached,
    NotFound,
    StorageError,
    VaultError,
    VaultItemType,
    VaultLocked,
    WeakCredential,
    unlock_prompt,
)
from ..vault.query import LIVE_LISTINGS
from ..vault.store import ANY_FOLDER
from .security import token_matches, verify_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vault", tags=["vault"])


# ── Dependencies ────────────────────────────────────────────────────

def get_services(request: Request) -> SkyViewServices:
    """Services for this app, with idle auto-lock applied first."""
    services: SkyViewServices = request.app.state.services
    services.enforce_auto_lock()
    return services


_ERROR_STATUS = {
    VaultLocked: status.HTTP_423_LOCKED,
    AuthError: status.HTTP_401_UNAUTHORIZED,
    WeakCredential: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    CyclicMove: status.HTTP_409_CONFLICT,
    FolderDepthExceeded: status.HTTP_409_CONFLICT,
    LocationLimitReached: status.HTTP_409_CONFLICT,
}


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    """Map vault errors to HTTP responses. Storage details never leave the server."""
    for error_type, code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return JSONResponse(
                status_code=code,
                content={"detail": str(exc), "error": type(exc).__name__},
            )
    if not isinstance(exc, StorageError):
        logger.error("Unmapped vault error: %s", type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Vault storage error", "error": "StorageError"},
    )


def _decode_content(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="content must be base64-encoded"
        )


def _serialize(value: Any) -> Any:
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


# ── Request models ──────────────────────────────────────────────────

class CredentialRequest(BaseModel):
    master_password: str


class ChangeCredentialRequest(BaseModel):
    old_password: str
    new_password: str


class CreateItemRequest(BaseModel):
    type: VaultItemType
    title: str = Field(..., min_length=1, max_length=500)
    content: str = ""  # base64
    folder_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    starred: bool = False


class UpdateItemRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = None  # base64
    metadata: Optional[Dict[str, Any]] = None


class MoveRequest(BaseModel):
    folder_id: Optional[str] = None


class CreateFolderRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[str] = None
    color: Optional[str] = Field(None, pattern="^#[0-9A-Fa-f]{6}$")
    order_index: int = 0


class UpdateFolderRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    color: Optional[str] = Field(None, pattern="^#[0-9A-Fa-f]{6}$")
    order_index: Optional[int] = None


class SettingRequest(BaseModel):
    value: str


# ── Lifecycle ───────────────────────────────────────────────────────

@router.get("/status")
async def get_vault_status(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    """Lock state, whether a vault exists, and how to prompt for unlock."""
    prompt = unlock_prompt(services.vault_preferences, services.keys)
    return {
        "state": services.keys.state.value,
        "initialized": services.keys.is_initialized(),
        "unlock_prompt": prompt.value if prompt else None,
        "lockout_remaining": services.keys.lockout_remaining(),
    }


@router.post("/initialize", status_code=status.HTTP_201_CREATED)
async def initialize_vault(
    request: CredentialRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.initialize_vault(request.master_password)
    return {"success": True}


@router.post("/unlock")
async def unlock_vault(
    request: CredentialRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.keys.unlock(request.master_password)
    return {"success": True, "state": services.keys.state.value}


@router.post("/lock")
async def lock_vault(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.keys.lock()
    return {"success": True, "state": services.keys.state.value}


@router.post("/change-password")
async def change_password(
    request: ChangeCredentialRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.keys.change_credential(request.old_password, request.new_password)
    return {"success": True}


# ── Items ───────────────────────────────────────────────────────────

@router.get("/items")
async def list_items(
    type: Optional[VaultItemType] = None,
    folder_id: Optional[str] = None,
    root: bool = False,
    starred: Optional[bool] = None,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    """List items newest first. Content is never included in listings."""
    folder = folder_id if folder_id is not None else (None if root else ANY_FOLDER)
    items = services.store.list_items(type=type, folder_id=folder, starred=starred)
    return {"items": _serialize(items)}


@router.get("/items/recent")
async def recent_items(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"items": _serialize(services.query.recent_items())}


@router.get("/items/search")
async def search_items(
    q: str = Query(..., min_length=1),
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"items": _serialize(services.query.search(q))}


@router.post("/items", status_code=status.HTTP_201_CREATED)
async def create_item(
    request: CreateItemRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    item = services.store.create_item(
        type=request.type,
        title=request.title,
        content=_decode_content(request.content) or b"",
        folder_id=request.folder_id,
        metadata=request.metadata,
        starred=request.starred,
    )
    return item.to_dict()


@router.get("/items/{item_id}")
async def open_item(
    item_id: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    """Decrypt one item (content base64-encoded). Records the access."""
    return services.query.open_item(item_id).to_dict(include_content=True)


@router.patch("/items/{item_id}")
async def update_item(
    item_id: str,
    request: UpdateItemRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    item = services.store.update_item(
        item_id,
        title=request.title,
        content=_decode_content(request.content),
        metadata=request.metadata,
    )
    return item.to_dict()


@router.post("/items/{item_id}/move")
async def move_item(
    item_id: str,
    request: MoveRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.store.move_item(item_id, request.folder_id)
    return {"success": True}


@router.post("/items/{item_id}/star")
async def toggle_star(
    item_id: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"starred": services.store.toggle_starred(item_id)}


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: str,
    permanent: bool = False,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    """Move an item to the trash, or delete it outright with ?permanent=true."""
    if permanent:
        services.store.delete_item(item_id)
        return {"success": True}
    entry = services.trash.soft_delete_item(item_id)
    return {"success": True, "trash_entry": entry.to_dict()}


# ── Folders ─────────────────────────────────────────────────────────

@router.get("/folders")
async def list_folders(
    parent_id: Optional[str] = None,
    root: bool = False,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    if parent_id is not None:
        folders = services.folders.subfolders(parent_id)
    elif root:
        folders = services.folders.root_folders()
    else:
        folders = services.folders.list_folders()
    return {"folders": _serialize(folders)}


@router.post("/folders", status_code=status.HTTP_201_CREATED)
async def create_folder(
    request: CreateFolderRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    folder = services.folders.create_folder(
        request.name,
        parent_id=request.parent_id,
        color=request.color,
        order_index=request.order_index,
    )
    return folder.to_dict()


@router.patch("/folders/{folder_id}")
async def update_folder(
    folder_id: str,
    request: UpdateFolderRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    folder = None
    if request.name is not None:
        folder = services.folders.rename_folder(folder_id, request.name)
    if request.color is not None or request.order_index is not None:
        folder = services.folders.update_folder(
            folder_id, color=request.color, order_index=request.order_index
        )
    if folder is None:
        folder = services.folders.get_folder(folder_id)
        if folder is None:
            raise NotFound("folder", folder_id)
    return folder.to_dict()


@router.post("/folders/{folder_id}/move")
async def move_folder(
    folder_id: str,
    request: MoveRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.folders.move_folder(folder_id, request.folder_id)
    return {"success": True}


@router.delete("/folders/{folder_id}")
async def delete_folder(
    folder_id: str,
    permanent: bool = False,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    """Move a folder subtree to the trash, or delete it with ?permanent=true."""
    if permanent:
        return {"success": True, "deleted": services.folders.delete_folder(folder_id)}
    entry = services.trash.soft_delete_folder(folder_id)
    return {"success": True, "trash_entry": entry.to_dict()}


# ── Trash ───────────────────────────────────────────────────────────

@router.get("/trash")
async def list_trash(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"entries": _serialize(services.trash.list_trash())}


@router.post("/trash/{entry_id}/restore")
async def restore_entry(
    entry_id: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    restored = services.trash.restore(entry_id)
    return {"success": True, "restored": restored.to_dict()}


@router.delete("/trash/{entry_id}")
async def purge_entry(
    entry_id: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.trash.purge(entry_id)
    return {"success": True}


@router.delete("/trash")
async def empty_trash(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"success": True, "purged": services.trash.empty_trash()}


@router.post("/trash/sweep")
async def sweep_trash(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"success": True, "purged": services.trash.sweep_expired()}


# ── Settings / stats ────────────────────────────────────────────────

@router.get("/settings")
async def get_settings(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return {"settings": services.store.get_all_settings()}


@router.put("/settings/{key}")
async def put_setting(
    key: str,
    request: SettingRequest,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    services.store.set_setting(key, request.value)
    return {"success": True}


@router.delete("/settings/{key}")
async def delete_setting(
    key: str,
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    if not services.store.delete_setting(key):
        raise NotFound("setting", key)
    return {"success": True}


@router.get("/stats")
async def get_stats(
    token: str = Depends(verify_session_token),
    services: SkyViewServices = Depends(get_services),
):
    return services.query.stats().to_dict()


# ── Live listings ───────────────────────────────────────────────────

async def _pump(websocket: WebSocket, listing: str, args: List[str], services: SkyViewServices) -> None:
    stream = services.query.stream(listing, *args)
    try:
        async for value in stream:
            if isinstance(value, VaultLocked):
                await websocket.send_json({"event": "locked", "listing": listing})
            else:
                await websocket.send_json(
                    {"event": "result", "listing": listing, "data": _serialize(value)}
                )
    except VaultError as e:
        await websocket.send_json({"event": "error", "error": type(e).__name__})
    except WebSocketDisconnect:
        pass
    finally:
        await stream.aclose()


@router.websocket("/ws")
async def vault_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    listing: str = Query("all_items"),
    arg: Optional[str] = Query(None),
):
    """
    Push a live listing to the client.

    Sends {"event": "result", "data": ...} on connect and after every
    vault change, {"event": "locked"} while the vault is locked.
    Authenticated with ?token=<session token>.
    """
    if not token_matches(token):
        await websocket.close(code=4401, reason="Unauthorized")
        return
    if listing not in LIVE_LISTINGS:
        await websocket.close(code=4400, reason="Unknown listing")
        return

    await websocket.accept()
    services: SkyViewServices = websocket.app.state.services
    args = [arg] if arg is not None else []
    pump = asyncio.create_task(_pump(websocket, listing, args, services))
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump
