from __future__ import annotations

"""Error taxonomy shared by the parser, renderer, coordinator, asset store and web layer.

Every error carries a stable ``code`` (used as the JSON ``error`` field at the HTTP
boundary and as the ``error_type`` stem in the error log) and a generic
``public_message`` that is safe to show to a client. The exception's own ``str()``
may contain internal detail and is only logged server side.
"""

__all__ = [
    "CardGenError",
    "InvalidFormatError",
    "TooLargeError",
    "MalformedContentError",
    "RenderError",
    "BadRequestError",
    "InvalidSessionError",
    "DuplicateSessionError",
    "JobNotFoundError",
    "UploadNotFoundError",
    "NotReadyError",
    "JobFailedError",
    "StalledJobError",
    "ArchiveError",
    "NoArtifactsAvailableError",
    "CompositionError",
    "AssetExistsError",
    "AssetNotFoundError",
]


class CardGenError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    public_message = "Erro ao processar a solicitação"


# Input validation (synchronous, no job created)

class InvalidFormatError(CardGenError):
    code = "INVALID_FORMAT"
    public_message = "Formato de arquivo não suportado"


class TooLargeError(CardGenError):
    code = "TOO_LARGE"
    public_message = "O arquivo excede o tamanho máximo permitido"

    def __init__(self, message: str, *, size: int | None = None, limit: int | None = None) -> None:
        super().__init__(message)
        self.size = size
        self.limit = limit


# Parse errors (rejected before any job starts)

class MalformedContentError(CardGenError):
    code = "MALFORMED_CONTENT"
    public_message = "Planilha inválida ou corrompida"

    def __init__(self, message: str, *, row_index: int | None = None, row_number: int | None = None) -> None:
        super().__init__(message)
        self.row_index = row_index
        self.row_number = row_number


# Render / job errors (delivered as terminal events)

class RenderError(CardGenError):
    code = "RENDER_ERROR"
    public_message = "Erro ao gerar os cards"

    def __init__(self, message: str, *, row_index: int = -1) -> None:
        super().__init__(message)
        self.row_index = row_index


class StalledJobError(CardGenError):
    code = "STALLED_JOB"
    public_message = "O processamento parou de responder"


class ArchiveError(CardGenError):
    code = "ARCHIVE_ERROR"
    public_message = "Erro ao gerar o arquivo compactado"


# Protocol errors

class BadRequestError(CardGenError):
    code = "BAD_REQUEST"
    public_message = "Requisição inválida"


class InvalidSessionError(CardGenError):
    code = "INVALID_SESSION"
    public_message = "Sessão inválida"


class DuplicateSessionError(CardGenError):
    code = "DUPLICATE_SESSION"
    public_message = "Já existe um processamento em andamento para esta sessão"


class JobNotFoundError(CardGenError):
    code = "JOB_NOT_FOUND"
    public_message = "Processamento não encontrado"


class UploadNotFoundError(CardGenError):
    code = "UPLOAD_NOT_FOUND"
    public_message = "Arquivo enviado não encontrado"


class NotReadyError(CardGenError):
    code = "NOT_READY"
    public_message = "O processamento ainda não terminou"


class JobFailedError(CardGenError):
    code = "JOB_FAILED"
    public_message = "Erro ao processar arquivo"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason or self.public_message


# Journal

class NoArtifactsAvailableError(CardGenError):
    code = "NO_ARTIFACTS_AVAILABLE"
    public_message = "Nenhum card gerado ainda"


class CompositionError(CardGenError):
    code = "COMPOSITION_ERROR"
    public_message = "Erro ao montar o jornal"


# Logo assets

class AssetExistsError(CardGenError):
    code = "ASSET_EXISTS"
    public_message = "Já existe uma logo com este nome"


class AssetNotFoundError(CardGenError):
    code = "ASSET_NOT_FOUND"
    public_message = "Logo não encontrada"
