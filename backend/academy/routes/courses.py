"""
Course Routes — Public course catalogue.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from academy.dependencies import AcademyServices, get_services
from academy.exceptions import StoreError
from academy.schemas.domain import Course

router = APIRouter(prefix="/api/courses", tags=["Courses"])


@router.get("", response_model=List[Course])
async def list_courses(services: AcademyServices = Depends(get_services)):
    """Published courses, soonest first."""
    try:
        courses = await services.courses.list_courses()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    return [c for c in courses if c.status == "published"]


@router.get("/{course_id}", response_model=Course)
async def get_course(course_id: str, services: AcademyServices = Depends(get_services)):
    try:
        course = await services.courses.get_course(course_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course
