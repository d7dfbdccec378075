import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from datetime import date, datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient #gives you a fake http client that can call your FastAPI routes without running a real server.
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from examforge.api.deps import get_db
from examforge.db.base import Base
from examforge.main import app
from examforge.schemas.generator import EvolutionSettings
from examforge.services.entities import (
    Chromosome,
    Classroom,
    Course,
    EncodedExam,
    ExamWindow,
    Invigilator,
    ProblemInstance,
    Student,
    Timeslot,
)

EXAM_DAY = date(2024, 1, 8)


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture() #test client
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def hourly_slots(day: date, count: int, first_hour: int = 9) -> tuple[Timeslot, ...]:
    start = datetime.combine(day, time(first_hour))
    return tuple(
        Timeslot(start + timedelta(hours=offset), start + timedelta(hours=offset + 1))
        for offset in range(count)
    )


def build_problem(
    *,
    course_count: int = 5,
    classroom_count: int = 3,
    invigilator_count: int = 2,
    timeslot_count: int = 4,
) -> ProblemInstance:
    students = tuple(Student(student_id=f"S{index}") for index in range(12))
    courses = tuple(
        Course(
            course_code=f"C{index}",
            exam_duration=1,
            student_ids=tuple(student.student_id for student in students[index * 2: index * 2 + 4]),
        )
        for index in range(course_count)
    )
    classrooms = tuple(
        Classroom(classroom_code=f"R{index}", capacity=4 + index * 2, is_pc_lab=index == 0)
        for index in range(classroom_count)
    )
    invigilators = tuple(
        Invigilator(invigilator_id=f"I{index}", max_courses_monitored_count=3)
        for index in range(invigilator_count)
    )
    return ProblemInstance(
        courses=courses,
        students=students,
        classrooms=classrooms,
        invigilators=invigilators,
        timeslots=hourly_slots(EXAM_DAY, timeslot_count),
        window=ExamWindow(
            start_date=EXAM_DAY,
            end_date=EXAM_DAY + timedelta(days=1),
            start_time=time(9),
            end_time=time(17),
        ),
    )


@pytest.fixture()
def problem() -> ProblemInstance:
    return build_problem()


@pytest.fixture()
def evolution_settings() -> EvolutionSettings:
    return EvolutionSettings(
        population_size=10,
        max_generations=50,
        generations_without_improvement=100,
        random_seed=42,
    )


def chromosome_from(problem: ProblemInstance, placements, chromosome_id: int = 0) -> Chromosome:
    """placements: one (timeslot index, classroom code, invigilator ids) per course, in course order."""
    return Chromosome(
        chromosome_id=chromosome_id,
        encoded_exams=[
            EncodedExam(
                course_code=course.course_code,
                classroom_code=classroom_code,
                timeslot=problem.timeslots[slot_index],
                invigilators=list(invigilators),
            )
            for course, (slot_index, classroom_code, invigilators) in zip(problem.courses, placements)
        ],
    )


FEASIBLE_PLACEMENTS = [
    (0, "R0", ["I0"]),
    (1, "R1", ["I1"]),
    (2, "R0", ["I0"]),
    (3, "R1", ["I1"]),
    (0, "R2", ["I1"]),
]
