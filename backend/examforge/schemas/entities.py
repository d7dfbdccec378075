from __future__ import annotations

from datetime import date, datetime, time

from pydantic import BaseModel, Field, field_validator, model_validator

from examforge.services.entities import (
    Classroom,
    Course,
    ExamWindow,
    Invigilator,
    Student,
    Timeslot,
)


class StudentPayload(BaseModel):
    student_id: str = Field(min_length=1, max_length=50)
    name: str = Field(default="", max_length=100)
    surname: str = Field(default="", max_length=100)

    def to_entity(self) -> Student:
        return Student(student_id=self.student_id, name=self.name, surname=self.surname)


class CoursePayload(BaseModel):
    course_code: str = Field(min_length=1, max_length=50)
    course_name: str = Field(default="", max_length=200)
    exam_duration: int = Field(default=2, ge=1, le=12)
    before_exam_prep_time: int = Field(default=0, ge=0, le=6)
    after_exam_prep_time: int = Field(default=0, ge=0, le=6)
    requires_pc_lab: bool = False
    student_ids: list[str] = Field(default_factory=list)

    @field_validator("student_ids")
    @classmethod
    def dedupe_students(cls, value: list[str]) -> list[str]:
        unique: list[str] = []
        seen: set[str] = set()
        for item in value:
            if item in seen:
                continue
            seen.add(item)
            unique.append(item)
        return unique

    def to_entity(self) -> Course:
        return Course(
            course_code=self.course_code,
            course_name=self.course_name,
            exam_duration=self.exam_duration,
            before_exam_prep_time=self.before_exam_prep_time,
            after_exam_prep_time=self.after_exam_prep_time,
            requires_pc_lab=self.requires_pc_lab,
            student_ids=tuple(self.student_ids),
        )


class ClassroomPayload(BaseModel):
    classroom_code: str = Field(min_length=1, max_length=50)
    classroom_name: str = Field(default="", max_length=200)
    capacity: int = Field(ge=1, le=5000)
    is_pc_lab: bool = False
    properties: list[str] = Field(default_factory=list)

    def to_entity(self) -> Classroom:
        return Classroom(
            classroom_code=self.classroom_code,
            classroom_name=self.classroom_name,
            capacity=self.capacity,
            is_pc_lab=self.is_pc_lab,
            properties=tuple(self.properties),
        )


class InvigilatorPayload(BaseModel):
    invigilator_id: str = Field(min_length=1, max_length=50)
    name: str = Field(default="", max_length=100)
    surname: str = Field(default="", max_length=100)
    max_courses_monitored_count: int = Field(default=3, ge=1, le=100)

    def to_entity(self) -> Invigilator:
        return Invigilator(
            invigilator_id=self.invigilator_id,
            name=self.name,
            surname=self.surname,
            max_courses_monitored_count=self.max_courses_monitored_count,
        )


class TimeslotPayload(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self) -> "TimeslotPayload":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def to_entity(self) -> Timeslot:
        return Timeslot(start=self.start, end=self.end)


class ExamWindowPayload(BaseModel):
    start_date: date
    end_date: date
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def validate_ranges(self) -> "ExamWindowPayload":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def to_entity(self) -> ExamWindow:
        return ExamWindow(
            start_date=self.start_date,
            end_date=self.end_date,
            start_time=self.start_time,
            end_time=self.end_time,
        )
