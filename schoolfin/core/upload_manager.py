"""
Bulk file import shared by the transaction and staff managers.
Pipeline: load -> map -> validate row by row -> hand valid rows to the caller.
"""
import hashlib
import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pandas as pd
from pydantic import BaseModel, ValidationError

from .audit import AuditLogger


@dataclass
class UploadResult:
    """Result of upload operation with row counts and per-row errors."""
    batch_id: str
    success: bool
    total_rows: int
    processed_rows: int
    error_rows: int
    row_errors: List[Dict[str, Any]] = field(default_factory=list)
    file_hash: str = ""
    timestamp: str = ""

    def to_dict(self):
        return asdict(self)


@dataclass
class ColumnMapping:
    """Maps uploaded columns to model fields."""
    source_column: str
    target_field: str
    transform: Optional[str] = None  # 'upper', 'lower', 'strip', 'date', 'number'


def _clean(value: Any) -> Any:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class UploadManager:
    """Loads CSV/Excel/JSON files and validates each row into a pydantic model."""

    def __init__(self, school_id: str, entity_type: str, audit_logger: Optional[AuditLogger] = None):
        self.school_id = school_id
        self.entity_type = entity_type
        self.audit_logger = audit_logger or AuditLogger(school_id)

    def load_file(self, file_path: Union[str, Path]) -> pd.DataFrame:
        """Load data from CSV, Excel, or JSON file."""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_ext = file_path.suffix.lower()
        if file_ext == '.csv':
            return pd.read_csv(file_path, dtype=str)
        if file_ext in ['.xlsx', '.xls']:
            return pd.read_excel(file_path, dtype=str)
        if file_ext == '.json':
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return pd.DataFrame(data if isinstance(data, list) else [data], dtype=str)
        raise ValueError(f"Unsupported file format: {file_ext}")

    def calculate_file_hash(self, file_path: Union[str, Path]) -> str:
        with open(file_path, 'rb') as f:
            return hashlib.md5(f.read()).hexdigest()

    def map_columns(self, df: pd.DataFrame, mappings: List[ColumnMapping]) -> pd.DataFrame:
        """Apply column mappings and transformations."""
        mapped_df = df.rename(columns={m.source_column: m.target_field for m in mappings})

        for mapping in mappings:
            col = mapping.target_field
            if col not in mapped_df.columns or not mapping.transform:
                continue
            if mapping.transform == 'upper':
                mapped_df[col] = mapped_df[col].str.upper()
            elif mapping.transform == 'lower':
                mapped_df[col] = mapped_df[col].str.lower()
            elif mapping.transform == 'strip':
                mapped_df[col] = mapped_df[col].str.strip()
            elif mapping.transform == 'date':
                mapped_df[col] = pd.to_datetime(mapped_df[col], errors='coerce')
            elif mapping.transform == 'number':
                mapped_df[col] = pd.to_numeric(mapped_df[col], errors='coerce')

        return mapped_df

    def validate_rows(
        self,
        df: pd.DataFrame,
        build: Callable[[Dict[str, Any]], BaseModel],
    ) -> tuple[List[BaseModel], List[Dict[str, Any]]]:
        """Build one model per row. Returns (valid models, row errors)."""
        valid = []
        row_errors = []
        for idx, row in df.iterrows():
            data = {k: _clean(v) for k, v in row.items()}
            data = {k: v for k, v in data.items() if v is not None}
            try:
                valid.append(build(data))
            except ValidationError as e:
                row_errors.append({
                    'row': idx + 1,
                    'errors': [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
                    'data': data,
                })
            except ValueError as e:
                row_errors.append({'row': idx + 1, 'errors': [str(e)], 'data': data})
        return valid, row_errors

    def process_upload(
        self,
        file_path: Union[str, Path],
        build: Callable[[Dict[str, Any]], BaseModel],
        mappings: Optional[List[ColumnMapping]] = None,
    ) -> tuple[UploadResult, List[BaseModel]]:
        """Load, map and validate a file. Persisting the valid rows is up to the caller."""
        df = self.load_file(file_path)
        if mappings:
            df = self.map_columns(df, mappings)
        valid, row_errors = self.validate_rows(df, build)

        result = UploadResult(
            batch_id=str(uuid.uuid4()),
            success=not row_errors,
            total_rows=len(df),
            processed_rows=len(valid),
            error_rows=len(row_errors),
            row_errors=row_errors,
            file_hash=self.calculate_file_hash(file_path),
            timestamp=datetime.now().isoformat(),
        )
        self.audit_logger.log_data_change(
            entity_type=self.entity_type,
            operation='upload',
            entity_id=result.batch_id,
            changes={
                'file_name': Path(file_path).name,
                'file_hash': result.file_hash,
                'total_rows': result.total_rows,
                'processed_rows': result.processed_rows,
                'error_rows': result.error_rows,
            },
        )
        return result, valid
