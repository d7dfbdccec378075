from dataclasses import replace
from datetime import time
import logging
import random

import pytest

from conftest import build_problem
from examforge.schemas.generator import EvolutionSettings
from examforge.services.entities import Course, Exam, IdSequence
from examforge.services.initialization import PopulationInitializer, create_exams, encode_exam


def make_initializer(problem, seed=5):
    return PopulationInitializer(problem, EvolutionSettings(population_size=4, tournament_size=2), random.Random(seed))


def test_population_keeps_course_order_and_fresh_ids(problem):
    ids = IdSequence()
    population = make_initializer(problem).build_population(6, ids)

    assert [item.chromosome_id for item in population] == list(range(6))
    assert ids.peek == 6
    expected = [course.course_code for course in problem.courses]
    for chromosome in population:
        assert [gene.course_code for gene in chromosome.encoded_exams] == expected
        assert all(gene.invigilators for gene in chromosome.encoded_exams)


def test_initial_placement_avoids_student_clashes(problem):
    courses = problem.courses
    for seed in range(5):
        chromosome = make_initializer(problem, seed).build_chromosome(seed)
        for first in range(len(courses)):
            for second in range(first + 1, len(courses)):
                if set(courses[first].student_ids) & set(courses[second].student_ids):
                    assert not chromosome.encoded_exams[first].timeslot.overlaps(
                        chromosome.encoded_exams[second].timeslot
                    )


def test_candidate_timeslots_cover_the_buffers_and_respect_the_window(problem):
    window = replace(problem.window, end_time=time(12))
    initializer = make_initializer(replace(problem, window=window))
    course = Course(course_code="C9", exam_duration=1, before_exam_prep_time=1)

    candidates = initializer.candidate_timeslots(course)

    assert [(slot.start.hour, slot.end.hour) for slot in candidates] == [(9, 11), (10, 12)]
    assert initializer.candidate_timeslots(course) is candidates


def test_candidate_timeslots_fall_back_when_nothing_fits(problem, caplog):
    window = replace(problem.window, start_time=time(18), end_time=time(20))
    initializer = make_initializer(replace(problem, window=window))

    with caplog.at_level(logging.WARNING):
        candidates = initializer.candidate_timeslots(problem.courses[0])

    assert len(candidates) == len(problem.timeslots)
    assert "No timeslot fits course C0" in caplog.text


def test_smallest_fitting_room_is_chosen():
    problem = build_problem(course_count=1)
    chromosome = make_initializer(problem).build_chromosome(0)
    assert chromosome.encoded_exams[0].classroom_code == "R0"

    big_course = replace(problem.courses[0], student_ids=tuple(f"S{index}" for index in range(6)))
    chromosome = make_initializer(replace(problem, courses=(big_course,))).build_chromosome(1)
    assert chromosome.encoded_exams[0].classroom_code == "R1"


def test_pc_lab_course_gets_a_pc_lab():
    problem = build_problem(course_count=1)
    lab_course = replace(problem.courses[0], requires_pc_lab=True, student_ids=("S0", "S1"))
    chromosome = make_initializer(replace(problem, courses=(lab_course,))).build_chromosome(0)
    assert chromosome.encoded_exams[0].classroom_code == "R0"


def test_encoding_requires_a_placement(problem):
    exam = create_exams(problem.courses)[0]
    with pytest.raises(ValueError):
        encode_exam(exam)

    exam = Exam(course=problem.courses[0], classroom=problem.classrooms[1], timeslot=problem.timeslots[2])
    encoded = encode_exam(exam)
    assert encoded.classroom_code == "R1"
    assert encoded.timeslot == problem.timeslots[2]
    assert encoded.invigilators == []


def test_invigilator_count_follows_students_per_invigilator():
    problem = build_problem(course_count=1, invigilator_count=3)
    settings = EvolutionSettings(population_size=4, tournament_size=2, students_per_invigilator=3)
    chromosome = PopulationInitializer(problem, settings, random.Random(2)).build_chromosome(0)

    invigilators = chromosome.encoded_exams[0].invigilators
    assert len(invigilators) == 2
    assert len(set(invigilators)) == 2

    settings = settings.model_copy(update={"students_per_invigilator": 1})
    chromosome = PopulationInitializer(problem, settings, random.Random(2)).build_chromosome(1)
    assert sorted(chromosome.encoded_exams[0].invigilators) == ["I0", "I1", "I2"]
