from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta


@dataclass(frozen=True)
class Timeslot:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"Timeslot start {self.start} must be before end {self.end}")

    def overlaps(self, other: Timeslot) -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class Student:
    student_id: str
    name: str = ""
    surname: str = ""


@dataclass(frozen=True)
class Course:
    course_code: str
    course_name: str = ""
    exam_duration: int = 2
    before_exam_prep_time: int = 0
    after_exam_prep_time: int = 0
    requires_pc_lab: bool = False
    student_ids: tuple[str, ...] = ()

    @property
    def total_duration(self) -> int:
        return self.before_exam_prep_time + self.exam_duration + self.after_exam_prep_time


@dataclass(frozen=True)
class Classroom:
    classroom_code: str
    classroom_name: str = ""
    capacity: int = 30
    is_pc_lab: bool = False
    properties: tuple[str, ...] = ()


@dataclass(frozen=True)
class Invigilator:
    invigilator_id: str
    name: str = ""
    surname: str = ""
    max_courses_monitored_count: int = 3


@dataclass(frozen=True)
class ExamWindow:
    start_date: date
    end_date: date  # exclusive
    start_time: time
    end_time: time

    def contains(self, slot: Timeslot, holidays: frozenset[date] = frozenset()) -> bool:
        day = slot.start.date()
        if slot.end.date() != day:
            return False
        if not self.start_date <= day < self.end_date:
            return False
        if day in holidays:
            return False
        return self.start_time <= slot.start.time() and slot.end.time() <= self.end_time


@dataclass
class Exam:
    course: Course
    classroom: Classroom | None = None
    timeslot: Timeslot | None = None
    invigilators: list[Invigilator] = field(default_factory=list)

    @property
    def student_ids(self) -> tuple[str, ...]:
        return self.course.student_ids


@dataclass
class EncodedExam:
    course_code: str
    classroom_code: str
    timeslot: Timeslot
    invigilators: list[str] = field(default_factory=list)

    def copy(self) -> EncodedExam:
        return EncodedExam(
            course_code=self.course_code,
            classroom_code=self.classroom_code,
            timeslot=self.timeslot,
            invigilators=list(self.invigilators),
        )

    def gene_key(self) -> tuple:
        return (self.classroom_code, self.timeslot.start, self.timeslot.end, tuple(self.invigilators))

    def exam_timeslot(self, course: Course) -> Timeslot:
        """Student-facing slot: the combined slot without the preparation buffers.

        Swap mutation can hand a course a slot cut for another course; when the
        buffers do not fit, the whole combined slot is used.
        """
        start = self.timeslot.start + timedelta(hours=course.before_exam_prep_time)
        end = self.timeslot.end - timedelta(hours=course.after_exam_prep_time)
        if start >= end:
            return self.timeslot
        return Timeslot(start, end)


@dataclass(eq=False)
class Chromosome:
    chromosome_id: int
    encoded_exams: list[EncodedExam]
    age: int = 0
    fitness_score: float = 0.0
    raw_fitness: float = 0.0

    def __len__(self) -> int:
        return len(self.encoded_exams)

    def clone(self, chromosome_id: int | None = None) -> Chromosome:
        return Chromosome(
            chromosome_id=self.chromosome_id if chromosome_id is None else chromosome_id,
            encoded_exams=[item.copy() for item in self.encoded_exams],
            age=self.age if chromosome_id is None else 0,
            fitness_score=self.fitness_score,
            raw_fitness=self.raw_fitness,
        )


class IdSequence:
    """Monotonic chromosome id source owned by a single controller."""

    def __init__(self, start: int = 0) -> None:
        self._next = start

    def next_id(self) -> int:
        value = self._next
        self._next += 1
        return value

    @property
    def peek(self) -> int:
        return self._next


@dataclass(frozen=True)
class ProblemInstance:
    courses: tuple[Course, ...]
    students: tuple[Student, ...]
    classrooms: tuple[Classroom, ...]
    invigilators: tuple[Invigilator, ...]
    timeslots: tuple[Timeslot, ...]
    window: ExamWindow
    holidays: frozenset[date] = frozenset()

    def course_map(self) -> dict[str, Course]:
        return {item.course_code: item for item in self.courses}

    def classroom_map(self) -> dict[str, Classroom]:
        return {item.classroom_code: item for item in self.classrooms}

    def invigilator_map(self) -> dict[str, Invigilator]:
        return {item.invigilator_id: item for item in self.invigilators}
