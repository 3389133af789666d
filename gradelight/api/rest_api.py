"""
REST API implementation for the Gradelight platform using FastAPI.

Handlers are plain functions so FastAPI runs them on its thread pool; class
write locks may block them briefly without stalling the event loop.
"""

from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field

from fastapi import FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core.entities import ClassSection, ComputedStatus, GradingSpecification, StatusThresholds, Student
from ..core.exceptions import (
    ConcurrencyError, ConfigurationError, DuplicateEntityError, EmptyFile, GradelightError,
    ImportStateError, ResourceNotFoundError, UnmappedColumn, ValidationError
)
from ..services import EnrollmentService, ImportManager, ImportPipeline, StatusService


# Pydantic models for API
class StudentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    cpf: str = Field(..., min_length=1, max_length=20)
    email: str = Field(..., pattern=r'^[^@]+@[^@]+\.[^@]+$')


class StudentUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., pattern=r'^[^@]+@[^@]+\.[^@]+$')


class StudentResponse(BaseModel):
    cpf: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime
    version: int


class GradingSpecificationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    concept_weights: List[Tuple[str, float]] = Field(..., alias="pesosDosConceitos", min_length=1)
    goal_weights: List[Tuple[str, float]] = Field(..., alias="pesosDasMetas", min_length=1)
    pass_threshold: Optional[float] = None
    safe_threshold: Optional[float] = None


class ClassCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(..., min_length=1, max_length=200)
    year: int = Field(..., ge=1900, le=2100)
    semester: int = Field(..., ge=1, le=2)
    grading_specification: GradingSpecificationPayload = Field(..., alias="especificacaoDoCalculoDaMedia")


class ClassResponse(BaseModel):
    id: str
    topic: str
    year: int
    semester: int
    grading_specification: Dict[str, Any]
    enrolled_count: int
    created_at: datetime


class EnrollmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_cpf: str = Field(..., alias="studentCPF", min_length=1)


class EnrollmentResponse(BaseModel):
    success: bool
    message: str
    class_id: str
    cpf: str


class EvaluationRequest(BaseModel):
    goal: str = Field(..., min_length=1)
    grade: str = Field(..., min_length=1)


class EvaluationResponse(BaseModel):
    class_id: str
    cpf: str
    goal: str
    grade: str


class StatusResponse(BaseModel):
    cpf: str
    name: Optional[str] = None
    score: Optional[float] = None
    color: Optional[str] = None
    failed_prior: bool
    computable: bool
    evaluations: Dict[str, str] = {}


class MappingRequest(BaseModel):
    mapping: Dict[str, Optional[str]]


class ImportResponse(BaseModel):
    import_id: str
    class_id: str
    state: str
    columns: List[str] = []
    mapping: Dict[str, str] = {}
    report: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class StatisticsResponse(BaseModel):
    success: bool
    statistics: Dict[str, Any]


def _http_error(error: GradelightError) -> HTTPException:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(error, ResourceNotFoundError):
        code = 404
    elif isinstance(error, (DuplicateEntityError, ImportStateError)):
        code = 409
    elif isinstance(error, (UnmappedColumn, EmptyFile)):
        code = 422
    elif isinstance(error, ConcurrencyError):
        code = 503
    elif isinstance(error, (ValidationError, ConfigurationError)):
        code = 400
    else:
        code = 500
    return HTTPException(status_code=code, detail={
        'error': error.message,
        'error_code': error.error_code,
        'details': error.details,
    })


class GradelightRestAPI:
    """REST API implementation for the Gradelight platform."""

    def __init__(self, enrollment_service: EnrollmentService, status_service: StatusService,
                 import_manager: ImportManager, default_thresholds: Optional[StatusThresholds] = None,
                 cors_origins: Optional[List[str]] = None):
        self._enrollment_service = enrollment_service
        self._status_service = status_service
        self._import_manager = import_manager
        self._default_thresholds = default_thresholds or StatusThresholds()

        self.app = FastAPI(
            title="Gradelight API",
            description="Competency grading with weighted scores and traffic-light risk status",
            version=__version__,
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/", response_model=Dict[str, str])
        async def root():
            return {
                "message": "Gradelight API",
                "version": __version__,
                "docs": "/docs"
            }

        @self.app.get("/health", response_model=Dict[str, str])
        async def health_check():
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        # Student endpoints
        @self.app.get("/api/students", response_model=List[StudentResponse])
        def list_students():
            return [self._student_to_response(s) for s in self._enrollment_service.list_students()]

        @self.app.post("/api/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
        def create_student(student_data: StudentCreate):
            try:
                student = self._enrollment_service.register_student(
                    student_data.cpf, student_data.name, student_data.email)
                return self._student_to_response(student)
            except GradelightError as e:
                raise _http_error(e)

        @self.app.get("/api/students/{cpf}", response_model=StudentResponse)
        def get_student(cpf: str):
            try:
                return self._student_to_response(self._enrollment_service.get_student(cpf))
            except GradelightError as e:
                raise _http_error(e)

        @self.app.put("/api/students/{cpf}", response_model=StudentResponse)
        def update_student(cpf: str, student_data: StudentUpdate):
            try:
                student = self._enrollment_service.update_student(cpf, student_data.name, student_data.email)
                return self._student_to_response(student)
            except GradelightError as e:
                raise _http_error(e)

        @self.app.delete("/api/students/{cpf}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_student(cpf: str):
            try:
                self._enrollment_service.delete_student(cpf)
            except GradelightError as e:
                raise _http_error(e)

        # Class endpoints
        @self.app.get("/api/classes", response_model=List[ClassResponse])
        def list_classes():
            return [self._class_to_response(c) for c in self._enrollment_service.list_classes()]

        @self.app.post("/api/classes", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
        def create_class(class_data: ClassCreate):
            try:
                specification = self._specification_from_payload(class_data.grading_specification)
                class_section = self._enrollment_service.create_class(
                    class_data.topic, class_data.year, class_data.semester, specification)
                return self._class_to_response(class_section)
            except GradelightError as e:
                raise _http_error(e)

        @self.app.get("/api/classes/{class_id}", response_model=ClassResponse)
        def get_class(class_id: str):
            try:
                return self._class_to_response(self._enrollment_service.get_class(class_id))
            except GradelightError as e:
                raise _http_error(e)

        @self.app.delete("/api/classes/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_class(class_id: str):
            try:
                self._import_manager.discard_class(class_id)
                self._enrollment_service.delete_class(class_id)
            except GradelightError as e:
                raise _http_error(e)

        # Enrollment and evaluation endpoints
        @self.app.post("/api/classes/{class_id}/enroll", response_model=EnrollmentResponse)
        def enroll_student(class_id: str, enrollment_data: EnrollmentRequest):
            try:
                result = self._enrollment_service.enroll(enrollment_data.student_cpf, class_id)
                return EnrollmentResponse(
                    success=result.success,
                    message=result.message,
                    class_id=class_id,
                    cpf=result.enrollment.student_id
                )
            except GradelightError as e:
                raise _http_error(e)

        @self.app.put("/api/classes/{class_id}/enrollments/{cpf}/evaluation", response_model=EvaluationResponse)
        def record_evaluation(class_id: str, cpf: str, evaluation_data: EvaluationRequest):
            try:
                evaluation = self._enrollment_service.record_evaluation(
                    class_id, cpf, evaluation_data.goal, evaluation_data.grade)
                return EvaluationResponse(
                    class_id=class_id,
                    cpf=evaluation.enrollment.student_id,
                    goal=evaluation.goal,
                    grade=evaluation.concept
                )
            except GradelightError as e:
                raise _http_error(e)

        @self.app.get("/api/classes/{class_id}/enrollments", response_model=List[StatusResponse])
        def list_enrollments(class_id: str):
            try:
                return [self._status_to_response(s) for s in self._status_service.class_status(class_id)]
            except GradelightError as e:
                raise _http_error(e)

        @self.app.get("/api/classes/{class_id}/enrollments/{cpf}/status", response_model=StatusResponse)
        def get_enrollment_status(class_id: str, cpf: str):
            try:
                return self._status_to_response(self._status_service.student_status(class_id, cpf))
            except GradelightError as e:
                raise _http_error(e)

        # Import endpoints
        @self.app.post("/api/classes/{class_id}/imports", response_model=ImportResponse,
                       status_code=status.HTTP_201_CREATED)
        def start_import(class_id: str, file: UploadFile = File(...)):
            try:
                content = file.file.read()
                pipeline = self._import_manager.start(class_id)
                try:
                    pipeline.load(content, filename=file.filename, content_type=file.content_type)
                except GradelightError:
                    self._import_manager.discard(pipeline.import_id)
                    raise
                return self._import_to_response(pipeline)
            except GradelightError as e:
                raise _http_error(e)

        @self.app.get("/api/imports/{import_id}", response_model=ImportResponse)
        def get_import(import_id: str):
            try:
                return self._import_to_response(self._import_manager.get(import_id))
            except GradelightError as e:
                raise _http_error(e)

        @self.app.post("/api/imports/{import_id}/mapping", response_model=ImportResponse)
        def confirm_mapping(import_id: str, mapping_data: MappingRequest):
            try:
                pipeline = self._import_manager.get(import_id)
                pipeline.confirm_mapping(mapping_data.mapping)
                return self._import_to_response(pipeline)
            except GradelightError as e:
                raise _http_error(e)

        @self.app.post("/api/imports/{import_id}/apply", response_model=ImportResponse)
        def apply_import(import_id: str):
            try:
                pipeline = self._import_manager.get(import_id)
                pipeline.apply()
                return self._import_to_response(pipeline)
            except GradelightError as e:
                raise _http_error(e)

        @self.app.delete("/api/imports/{import_id}", response_model=ImportResponse)
        def cancel_import(import_id: str):
            try:
                pipeline = self._import_manager.get(import_id)
                self._import_manager.discard(import_id)
                return self._import_to_response(pipeline)
            except GradelightError as e:
                raise _http_error(e)

        # Statistics endpoints
        @self.app.get("/api/statistics", response_model=StatisticsResponse)
        def get_statistics():
            statistics = self._enrollment_service.get_statistics()
            statistics['imports_in_flight'] = self._import_manager.count()
            return StatisticsResponse(success=True, statistics=statistics)

    def _specification_from_payload(self, payload: GradingSpecificationPayload) -> GradingSpecification:
        thresholds = None
        if payload.pass_threshold is not None or payload.safe_threshold is not None:
            thresholds = StatusThresholds(
                pass_threshold=(payload.pass_threshold if payload.pass_threshold is not None
                                else self._default_thresholds.pass_threshold),
                safe_threshold=(payload.safe_threshold if payload.safe_threshold is not None
                                else self._default_thresholds.safe_threshold)
            )
        return GradingSpecification.from_pairs(payload.concept_weights, payload.goal_weights, thresholds)

    def _student_to_response(self, student: Student) -> StudentResponse:
        return StudentResponse(
            cpf=student.national_id,
            name=student.name,
            email=student.email,
            created_at=student.created_at,
            updated_at=student.updated_at,
            version=student.version
        )

    def _class_to_response(self, class_section: ClassSection) -> ClassResponse:
        return ClassResponse(
            id=class_section.id,
            topic=class_section.topic,
            year=class_section.year,
            semester=class_section.semester,
            grading_specification=class_section.grading_specification.to_dict(),
            enrolled_count=len(self._enrollment_service.get_enrollments(class_section.id)),
            created_at=class_section.created_at
        )

    def _status_to_response(self, computed: ComputedStatus) -> StatusResponse:
        student = self._enrollment_service.find_student(computed.enrollment.student_id)
        return StatusResponse(
            cpf=computed.enrollment.student_id,
            name=student.name if student else None,
            score=round(computed.score, 2) if computed.score is not None else None,
            color=computed.color.value if computed.color else None,
            failed_prior=computed.failed_prior,
            computable=computed.computable,
            evaluations=computed.evaluations
        )

    def _import_to_response(self, pipeline: ImportPipeline) -> ImportResponse:
        return ImportResponse(
            import_id=pipeline.import_id,
            class_id=pipeline.class_id,
            state=pipeline.state.value,
            columns=pipeline.columns,
            mapping=pipeline.mapping,
            report=pipeline.report.to_dict() if pipeline.report else None,
            error=pipeline.error
        )
