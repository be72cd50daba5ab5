"""Sample course used by the API when no course data file is configured."""

import json
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

from coursepilot.core.persistence import InMemoryCourseStore

logger = logging.getLogger(__name__)

DEMO_DATA: Dict[str, List[Dict[str, Any]]] = {
    "users": [
        {"id": "u1", "name": "Dr. Sarah Chen", "email": "schen@university.edu"},
        {"id": "u2", "name": "Michael Park", "email": "mpark@university.edu"},
        {"id": "u3", "name": "Emma Wilson", "email": "ewilson@student.edu"},
        {"id": "u4", "name": "James Rodriguez", "email": "jrodriguez@student.edu"},
        {"id": "u5", "name": "Aisha Patel", "email": "apatel@student.edu"},
    ],
    "courses": [
        {
            "id": "c1",
            "name": "ECON 101 - Introduction to Economics",
            "code": "ECON101",
            "createdBy": "u1",
            "visible": True,
            "description": "An introduction to microeconomic and macroeconomic principles",
            "startHereTitle": "Start Here",
            "startHereContent": "Welcome to **ECON 101**! Review the syllabus and complete Quiz 1.",
        },
    ],
    "enrollments": [
        {"userId": "u1", "courseId": "c1", "role": "instructor"},
        {"userId": "u2", "courseId": "c1", "role": "ta"},
        {"userId": "u3", "courseId": "c1", "role": "student"},
        {"userId": "u4", "courseId": "c1", "role": "student"},
        {"userId": "u5", "courseId": "c1", "role": "student"},
    ],
    "assignments": [
        {
            "id": "a1",
            "courseId": "c1",
            "title": "Problem Set 1",
            "description": "Supply and demand exercises.",
            "assignmentType": "essay",
            "gradingType": "points",
            "category": "homework",
            "points": 100,
            "status": "published",
            "dueDate": "2026-09-15T23:59",
            "allowLateSubmissions": True,
            "latePenaltyType": "per_day",
            "lateDeduction": 10,
        },
        {
            "id": "a2",
            "courseId": "c1",
            "title": "Quiz 1",
            "description": "Chapters 1-2.",
            "assignmentType": "quiz",
            "gradingType": "points",
            "category": "quiz",
            "points": 20,
            "status": "draft",
            "dueDate": "2026-09-20T23:59",
            "questionBankId": "qb1",
            "numQuestions": 5,
            "timeLimit": 30,
            "attempts": 1,
        },
    ],
    "announcements": [
        {
            "id": "n1",
            "courseId": "c1",
            "title": "Welcome!",
            "content": "Office hours are Tuesdays 2-4pm.",
            "pinned": True,
            "hidden": False,
            "authorId": "u1",
            "createdAt": "2026-09-01T09:00",
        },
    ],
    "modules": [
        {
            "id": "m1",
            "courseId": "c1",
            "name": "Week 1: Foundations",
            "position": 1,
            "items": [
                {"id": "mi1", "type": "assignment", "title": "Problem Set 1", "refId": "a1", "position": 1},
                {"id": "mi2", "type": "file", "title": "Syllabus", "refId": "f1", "position": 2},
            ],
        },
    ],
    "files": [
        {
            "id": "f1",
            "courseId": "c1",
            "name": "Syllabus",
            "mimeType": "text/plain",
            "size": 2048,
            "url": "",
        },
    ],
    "question_banks": [
        {
            "id": "qb1",
            "courseId": "c1",
            "name": "Chapter 1-2 Review",
            "questions": [
                {
                    "id": "q1",
                    "type": "multiple_choice",
                    "prompt": "What does a demand curve show?",
                    "options": ["Price vs quantity demanded", "Cost vs output", "Income vs savings"],
                    "correctAnswer": "Price vs quantity demanded",
                    "points": 4,
                },
                {
                    "id": "q2",
                    "type": "true_false",
                    "prompt": "Scarcity means resources are limited.",
                    "options": ["True", "False"],
                    "correctAnswer": "True",
                    "points": 4,
                },
            ],
        },
    ],
    "group_sets": [
        {"id": "g1", "courseId": "c1", "name": "Project Teams", "groups": [{"id": "g1a", "name": "Team A"}]},
    ],
}


def load_store(path: str | None = None) -> InMemoryCourseStore:
    """
    Build the API's course store from the JSON file at *path*.

    Falls back to :data:`DEMO_DATA` when no path is given or the file does not exist.
    """
    if path:
        data_file = Path(path)
        if data_file.is_file():
            with data_file.open(encoding="utf-8") as f:
                data = json.load(f)
            logger.info("Loaded course data from %s", data_file)
            return InMemoryCourseStore(data)
        logger.info("No course data at %s; using the demo course", data_file)
    return InMemoryCourseStore(DEMO_DATA)
