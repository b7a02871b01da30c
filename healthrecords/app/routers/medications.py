"""REST router for the user's medication list."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from healthrecords.app.dependencies import get_current_user, get_storage
from healthrecords.app.models.events import MedicationIn, MedicationOut, MedicationUpdate
from healthrecords.services.storage_service import StorageService

router = APIRouter(prefix="/api/medications", tags=["medications"])


def _medications_out(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [MedicationOut(**row).model_dump(by_alias=True) for row in rows]


@router.get("")
async def list_medications(
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    rows = await storage.list_medications(user_id)
    return {"success": True, "medications": _medications_out(rows), "count": len(rows)}


@router.get("/active")
async def active_medications(
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    """Medications not stopped and without a past end date."""

    rows = await storage.list_medications(user_id, active_only=True)
    return {"success": True, "medications": _medications_out(rows), "count": len(rows)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_medication(
    payload: MedicationIn,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    if payload.end_date and payload.start_date and payload.end_date < payload.start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="endDate must not be before startDate",
        )
    row = await storage.create_medication(user_id, payload.model_dump())
    return {"success": True, "medication": MedicationOut(**row).model_dump(by_alias=True)}


@router.put("/{medication_id}")
async def update_medication(
    medication_id: str,
    payload: MedicationUpdate,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid fields to update")

    row = await storage.update_medication(medication_id, user_id, updates)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medication not found")
    return {"success": True, "medication": MedicationOut(**row).model_dump(by_alias=True)}


@router.delete("/{medication_id}")
async def delete_medication(
    medication_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    if not await storage.delete_medication(medication_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medication not found")
    return {"success": True, "message": "Medication deleted"}
