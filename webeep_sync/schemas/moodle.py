"""Response shapes of the Moodle web service functions we consume."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, TypeAdapter


class _MoodleModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SiteInfo(_MoodleModel):
    """``core_webservice_get_site_info`` response (subset)."""

    userid: int
    fullname: str


class EnrolledCourse(_MoodleModel):
    """One entry of ``core_enrol_get_users_courses``."""

    id: int
    fullname: str


class ModuleContent(_MoodleModel):
    """A content entry of a course module. Only ``type == "file"`` is downloadable."""

    type: str
    filename: str = ""
    filepath: str | None = "/"
    filesize: int = 0
    fileurl: str = ""
    timecreated: int | None = None
    timemodified: int = 0


class CourseModule(_MoodleModel):
    id: int | None = None
    name: str
    contents: list[ModuleContent] | None = None


class CourseSection(_MoodleModel):
    """One section of ``core_course_get_contents``."""

    id: int | None = None
    name: str
    modules: list[CourseModule] = []


class TokenResponse(_MoodleModel):
    """``/login/token.php`` response; either ``token`` or ``error`` is set."""

    token: str | None = None
    error: str | None = None
    errorcode: str | None = None


ENROLLED_COURSES = TypeAdapter(list[EnrolledCourse])
COURSE_CONTENTS = TypeAdapter(list[CourseSection])
