from __future__ import annotations

from collections import Counter, defaultdict
import logging
import math
import random
from datetime import timedelta

from examforge.schemas.generator import EvolutionSettings
from examforge.services.entities import (
    Chromosome,
    Classroom,
    Course,
    EncodedExam,
    Exam,
    IdSequence,
    Invigilator,
    ProblemInstance,
    Timeslot,
)

logger = logging.getLogger(__name__)


def create_exams(courses: tuple[Course, ...] | list[Course]) -> list[Exam]:
    return [Exam(course=course) for course in courses]


def encode_exam(exam: Exam) -> EncodedExam:
    if exam.classroom is None or exam.timeslot is None:
        raise ValueError(f"Exam {exam.course.course_code} has not been assigned a classroom and timeslot")
    return EncodedExam(
        course_code=exam.course.course_code,
        classroom_code=exam.classroom.classroom_code,
        timeslot=exam.timeslot,
        invigilators=[item.invigilator_id for item in exam.invigilators],
    )


class PopulationInitializer:
    """Builds chromosomes by greedily mapping every exam to a timeslot, a room and invigilators.

    Exams are visited in a shuffled order so chromosomes differ, but the encoded
    sequence always follows the course order of the problem instance.
    """

    def __init__(self, problem: ProblemInstance, settings: EvolutionSettings, rng: random.Random) -> None:
        self.problem = problem
        self.settings = settings
        self.random = rng
        self._candidates_by_course: dict[str, list[Timeslot]] = {}

    def candidate_timeslots(self, course: Course) -> list[Timeslot]:
        cached = self._candidates_by_course.get(course.course_code)
        if cached is not None:
            return cached
        span = timedelta(hours=course.total_duration)
        combined = [Timeslot(slot.start, slot.start + span) for slot in self.problem.timeslots]
        fitting = [slot for slot in combined if self.problem.window.contains(slot, self.problem.holidays)]
        if not fitting:
            logger.warning(
                "No timeslot fits course %s (%sh) inside the exam window; using unconstrained starts",
                course.course_code,
                course.total_duration,
            )
            fitting = combined
        self._candidates_by_course[course.course_code] = fitting
        return fitting

    def build_chromosome(self, chromosome_id: int) -> Chromosome:
        exams = create_exams(self.problem.courses)
        order = list(range(len(exams)))
        self.random.shuffle(order)

        placed: list[Exam] = []
        room_busy: dict[str, list[Timeslot]] = defaultdict(list)
        invigilator_busy: dict[str, list[Timeslot]] = defaultdict(list)
        invigilator_load: Counter[str] = Counter()

        for index in order:
            exam = exams[index]
            self._assign_timeslot(exam, placed)
            self._assign_classroom(exam, room_busy)
            self._assign_invigilators(exam, invigilator_busy, invigilator_load)
            placed.append(exam)

        return Chromosome(chromosome_id=chromosome_id, encoded_exams=[encode_exam(exam) for exam in exams])

    def build_population(self, size: int, id_sequence: IdSequence) -> list[Chromosome]:
        population = [self.build_chromosome(id_sequence.next_id()) for _ in range(size)]
        logger.debug("Initial population built | size=%s | exams=%s", len(population), len(self.problem.courses))
        return population

    def _assign_timeslot(self, exam: Exam, placed: list[Exam]) -> None:
        candidates = list(self.candidate_timeslots(exam.course))
        self.random.shuffle(candidates)
        students = set(exam.student_ids)
        for slot in candidates:
            clash = any(
                other.timeslot is not None
                and other.timeslot.overlaps(slot)
                and students.intersection(other.student_ids)
                for other in placed
            )
            if not clash:
                exam.timeslot = slot
                return
        exam.timeslot = self.random.choice(candidates)

    def _assign_classroom(self, exam: Exam, room_busy: dict[str, list[Timeslot]]) -> None:
        slot = exam.timeslot
        head_count = len(exam.student_ids)
        rooms = list(self.problem.classrooms)
        self.random.shuffle(rooms)

        def is_free(room: Classroom) -> bool:
            return not any(slot.overlaps(other) for other in room_busy[room.classroom_code])

        fitting = [
            room
            for room in rooms
            if room.capacity >= head_count and is_free(room) and (room.is_pc_lab or not exam.course.requires_pc_lab)
        ]
        if fitting:
            chosen = min(fitting, key=lambda room: room.capacity)
        else:
            free = [room for room in rooms if is_free(room)]
            chosen = max(free or rooms, key=lambda room: room.capacity)
        exam.classroom = chosen
        room_busy[chosen.classroom_code].append(slot)

    def _assign_invigilators(
        self,
        exam: Exam,
        invigilator_busy: dict[str, list[Timeslot]],
        invigilator_load: Counter[str],
    ) -> None:
        slot = exam.timeslot
        pool = list(self.problem.invigilators)
        needed = min(len(pool), max(1, math.ceil(len(exam.student_ids) / self.settings.students_per_invigilator)))
        self.random.shuffle(pool)
        pool.sort(key=lambda item: invigilator_load[item.invigilator_id])

        def available(item: Invigilator) -> bool:
            return invigilator_load[item.invigilator_id] < item.max_courses_monitored_count and not any(
                slot.overlaps(other) for other in invigilator_busy[item.invigilator_id]
            )

        chosen = [item for item in pool if available(item)][:needed]
        if len(chosen) < needed:
            chosen.extend(item for item in pool if item not in chosen)
            chosen = chosen[:needed]
        exam.invigilators = chosen
        for item in chosen:
            invigilator_busy[item.invigilator_id].append(slot)
            invigilator_load[item.invigilator_id] += 1
