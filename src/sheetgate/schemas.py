"""Table schemas for the built-in entities and the registry that holds them."""

from typing import Iterable, Optional

from . import business_rules as rules
from .models import BusinessRule, RelationshipRule, RuleKind, TableSchema, ValidationRule

PHONE_PATTERN = r"^[\d\s\-\+\(\)]+$"

ID = ValidationRule("id", RuleKind.STRING, "ID must be a valid string")
CREATED_AT = ValidationRule("created_at", RuleKind.DATE, "Creation date must be valid")
UPDATED_AT = ValidationRule("updated_at", RuleKind.DATE, "Update date must be valid")
ACTIVO = ValidationRule("activo", RuleKind.BOOLEAN, "Active flag must be true or false")


class SchemaRegistry:
    """Table name -> TableSchema, populated once at start-up."""

    def __init__(self, schemas: Iterable[TableSchema] = ()):
        self._schemas: dict[str, TableSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: TableSchema) -> None:
        if schema.table_name in self._schemas:
            raise ValueError(f"Schema already registered for table: {schema.table_name}")
        self._schemas[schema.table_name] = schema

    def get(self, table_name: str) -> Optional[TableSchema]:
        return self._schemas.get(table_name)

    def table_names(self) -> list[str]:
        return list(self._schemas)

    def __contains__(self, table_name: str) -> bool:
        return table_name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


def _unique(table: str, field: str, message: str) -> BusinessRule:
    return BusinessRule(
        name=f"unique_{field}",
        description=f"{field} must be unique in {table}",
        validator=rules.unique_field(table, field),
        message=message,
        field=field,
    )


USER_SCHEMA = TableSchema(
    table_name="Usuarios",
    fields=(
        ID,
        ValidationRule("email", RuleKind.EMAIL, "Email must have a valid format"),
        ValidationRule("nombre", RuleKind.REQUIRED, "Name is required", min=2, max=100),
        ValidationRule(
            "rol",
            RuleKind.ENUM,
            "Role is not valid",
            enum_values=("admin_lider", "admin", "editor", "tecnico"),
        ),
        ACTIVO,
        CREATED_AT,
        UPDATED_AT,
    ),
    business_rules=(
        _unique("Usuarios", "email", "A user with this email already exists"),
    ),
)

MATERIAL_SCHEMA = TableSchema(
    table_name="Materiales",
    fields=(
        ID,
        ValidationRule("sku", RuleKind.REQUIRED, "SKU is required", min=3, max=50),
        ValidationRule(
            "descripcion", RuleKind.REQUIRED, "Description is required", min=5, max=200
        ),
        ValidationRule("categoria", RuleKind.REQUIRED, "Category is required"),
        ValidationRule("unidad", RuleKind.REQUIRED, "Unit is required"),
        ValidationRule(
            "costo_ref", RuleKind.NUMBER, "Reference cost must be a valid number", min=0
        ),
        ValidationRule(
            "stock_actual", RuleKind.NUMBER, "Current stock must be a valid number", min=0
        ),
        ValidationRule(
            "stock_minimo", RuleKind.NUMBER, "Minimum stock must be a valid number", min=0
        ),
        ValidationRule(
            "proveedor_principal", RuleKind.STRING, "Main supplier must be a valid string"
        ),
        ACTIVO,
        CREATED_AT,
        UPDATED_AT,
    ),
    business_rules=(
        _unique("Materiales", "sku", "A material with this SKU already exists"),
        BusinessRule(
            name="stock_validation",
            description="Stock levels are consistent",
            validator=rules.stock_levels(),
            message="Stock levels are not valid",
            field="stock_minimo",
        ),
    ),
)

PROJECT_SCHEMA = TableSchema(
    table_name="Proyectos",
    fields=(
        ID,
        ValidationRule(
            "codigo", RuleKind.REQUIRED, "Project code is required", pattern=r"^[A-Z]{2,3}-\d{4}$"
        ),
        ValidationRule(
            "nombre", RuleKind.REQUIRED, "Project name is required", min=5, max=150
        ),
        ValidationRule("cliente_id", RuleKind.REQUIRED, "Client is required"),
        ValidationRule("responsable_id", RuleKind.REQUIRED, "Owner is required"),
        ValidationRule("ubicacion", RuleKind.REQUIRED, "Location is required"),
        ValidationRule(
            "descripcion", RuleKind.STRING, "Description must be a valid string", max=500
        ),
        ValidationRule("linea_servicio", RuleKind.REQUIRED, "Service line is required"),
        ValidationRule(
            "sla_objetivo",
            RuleKind.NUMBER,
            "Target SLA must be a valid number",
            min=1,
            max=8760,
        ),
        ValidationRule("inicio_plan", RuleKind.DATE, "Planned start date must be valid"),
        ValidationRule("fin_plan", RuleKind.DATE, "Planned end date must be valid"),
        ValidationRule(
            "presupuesto_total", RuleKind.NUMBER, "Total budget must be a valid number", min=0
        ),
        ValidationRule(
            "moneda", RuleKind.ENUM, "Currency is not valid", enum_values=("PEN", "USD")
        ),
        ValidationRule(
            "estado",
            RuleKind.ENUM,
            "Status is not valid",
            enum_values=("Planificación", "En progreso", "Pausado", "Cerrado"),
        ),
        ValidationRule(
            "avance_pct", RuleKind.NUMBER, "Progress must be a valid number", min=0, max=100
        ),
        CREATED_AT,
        UPDATED_AT,
    ),
    relationships=(
        RelationshipRule("cliente_id", "Clientes", "The specified client does not exist"),
        RelationshipRule("responsable_id", "Usuarios", "The specified owner does not exist"),
    ),
    business_rules=(
        _unique("Proyectos", "codigo", "A project with this code already exists"),
        BusinessRule(
            name="date_range_validation",
            description="End date is after start date",
            validator=rules.date_order("inicio_plan", "fin_plan"),
            message="The end date must be after the start date",
            field="fin_plan",
        ),
        BusinessRule(
            name="responsible_active_validation",
            description="Owner is active and may manage projects",
            validator=rules.active_user("responsable_id", ("admin_lider", "admin", "editor")),
            message="The assigned owner is inactive or lacks permissions",
            field="responsable_id",
        ),
    ),
)

ACTIVITY_SCHEMA = TableSchema(
    table_name="Actividades",
    fields=(
        ID,
        ValidationRule("proyecto_id", RuleKind.REQUIRED, "Project is required"),
        ValidationRule(
            "codigo",
            RuleKind.REQUIRED,
            "Activity code is required",
            pattern=r"^[A-Z]{2,3}-\d{4}-\d{3}$",
        ),
        ValidationRule("titulo", RuleKind.REQUIRED, "Title is required", min=5, max=100),
        ValidationRule(
            "descripcion", RuleKind.STRING, "Description must be a valid string", max=500
        ),
        ValidationRule("responsable_id", RuleKind.REQUIRED, "Owner is required"),
        ValidationRule(
            "prioridad",
            RuleKind.ENUM,
            "Priority is not valid",
            enum_values=("Baja", "Media", "Alta", "Crítica"),
        ),
        ValidationRule(
            "estado",
            RuleKind.ENUM,
            "Status is not valid",
            enum_values=("Pendiente", "En progreso", "En revisión", "Completada"),
        ),
        ValidationRule("inicio_plan", RuleKind.DATE, "Planned start date must be valid"),
        ValidationRule("fin_plan", RuleKind.DATE, "Planned end date must be valid"),
        ValidationRule(
            "porcentaje_avance",
            RuleKind.NUMBER,
            "Progress must be a valid number",
            min=0,
            max=100,
        ),
        CREATED_AT,
        UPDATED_AT,
    ),
    relationships=(
        RelationshipRule("proyecto_id", "Proyectos", "The specified project does not exist"),
        RelationshipRule("responsable_id", "Usuarios", "The specified owner does not exist"),
        RelationshipRule(
            "checklist_id",
            "Checklists",
            "The specified checklist does not exist",
            required=False,
        ),
    ),
    business_rules=(
        BusinessRule(
            name="activity_within_project_dates",
            description="Activity dates fall inside the project dates",
            validator=rules.within_parent_dates("Proyectos", "proyecto_id"),
            message="Activity dates must be within the project date range",
            field="inicio_plan",
        ),
        BusinessRule(
            name="completion_percentage_validation",
            description="Completed activities are at 100%",
            validator=rules.completion_requires_full_progress(),
            message="A completed activity must be at 100% progress",
            field="porcentaje_avance",
        ),
    ),
)

CLIENT_SCHEMA = TableSchema(
    table_name="Clientes",
    fields=(
        ID,
        ValidationRule("ruc", RuleKind.REQUIRED, "RUC is required", pattern=r"^\d{11}$"),
        ValidationRule(
            "razon_social", RuleKind.REQUIRED, "Legal name is required", min=3, max=150
        ),
        ValidationRule(
            "nombre_comercial", RuleKind.STRING, "Trade name must be a valid string", max=100
        ),
        ValidationRule("direccion", RuleKind.REQUIRED, "Address is required", max=200),
        ValidationRule(
            "telefono", RuleKind.STRING, "Phone must be a valid string", pattern=PHONE_PATTERN
        ),
        ValidationRule("email", RuleKind.EMAIL, "Email must have a valid format"),
        ValidationRule(
            "contacto_principal", RuleKind.REQUIRED, "Main contact is required", max=100
        ),
        ACTIVO,
        CREATED_AT,
        UPDATED_AT,
    ),
    business_rules=(
        BusinessRule(
            name="unique_ruc",
            description="RUC is valid and unique",
            validator=rules.tax_id("Clientes", "ruc"),
            message="The RUC must be valid and unique",
            field="ruc",
        ),
    ),
)

PERSONNEL_SCHEMA = TableSchema(
    table_name="Personal",
    fields=(
        ID,
        ValidationRule(
            "dni_ruc", RuleKind.REQUIRED, "DNI/RUC is required", pattern=r"^(\d{8}|\d{11})$"
        ),
        ValidationRule("nombres", RuleKind.REQUIRED, "Names are required", min=3, max=100),
        ValidationRule(
            "telefono", RuleKind.STRING, "Phone must be a valid string", pattern=PHONE_PATTERN
        ),
        ValidationRule("email", RuleKind.EMAIL, "Email must have a valid format"),
        ValidationRule("especialidad", RuleKind.REQUIRED, "Speciality is required"),
        ValidationRule(
            "tarifa_hora", RuleKind.NUMBER, "Hourly rate must be a valid number", min=0
        ),
        ValidationRule("zona", RuleKind.STRING, "Zone must be a valid string"),
        ACTIVO,
        CREATED_AT,
        UPDATED_AT,
    ),
    business_rules=(
        BusinessRule(
            name="unique_dni_ruc",
            description="DNI/RUC is valid and unique",
            validator=rules.tax_id("Personal", "dni_ruc", allow_dni=True),
            message="The DNI/RUC must be valid and unique",
            field="dni_ruc",
        ),
    ),
)

BOM_SCHEMA = TableSchema(
    table_name="BOM",
    fields=(
        ID,
        ValidationRule("actividad_id", RuleKind.REQUIRED, "Activity is required"),
        ValidationRule("proyecto_id", RuleKind.REQUIRED, "Project is required"),
        ValidationRule("material_id", RuleKind.REQUIRED, "Material is required"),
        ValidationRule(
            "qty_requerida",
            RuleKind.NUMBER,
            "Required quantity must be a valid number",
            min=0.01,
        ),
        ValidationRule(
            "qty_asignada", RuleKind.NUMBER, "Assigned quantity must be a valid number", min=0
        ),
        ValidationRule(
            "costo_unit_est",
            RuleKind.NUMBER,
            "Estimated unit cost must be a valid number",
            min=0,
        ),
        ValidationRule(
            "lead_time_dias", RuleKind.NUMBER, "Lead time must be a valid number", min=0
        ),
        ValidationRule(
            "estado_abastecimiento",
            RuleKind.ENUM,
            "Supply status is not valid",
            enum_values=("Por pedir", "Pedido", "En tránsito", "Recibido", "Entregado"),
        ),
        ValidationRule("fecha_requerida", RuleKind.DATE, "Required date must be valid"),
        CREATED_AT,
        UPDATED_AT,
    ),
    relationships=(
        RelationshipRule("actividad_id", "Actividades", "The specified activity does not exist"),
        RelationshipRule("proyecto_id", "Proyectos", "The specified project does not exist"),
        RelationshipRule("material_id", "Materiales", "The specified material does not exist"),
    ),
    business_rules=(
        BusinessRule(
            name="assigned_not_exceed_required",
            description="Assigned quantity does not exceed the required quantity",
            validator=rules.assigned_not_exceed_required(),
            message="The assigned quantity cannot exceed the required quantity",
            field="qty_asignada",
        ),
        BusinessRule(
            name="material_availability",
            description="Material is active and has enough stock",
            validator=rules.material_availability(),
            message="The material is unavailable or there is not enough stock",
            field="material_id",
        ),
    ),
)

TIME_ENTRY_SCHEMA = TableSchema(
    table_name="RegistroHoras",
    fields=(
        ID,
        ValidationRule("colaborador_id", RuleKind.REQUIRED, "Collaborator is required"),
        ValidationRule("proyecto_id", RuleKind.REQUIRED, "Project is required"),
        ValidationRule("actividad_id", RuleKind.REQUIRED, "Activity is required"),
        ValidationRule("fecha", RuleKind.DATE, "Date must be valid"),
        ValidationRule(
            "horas_trabajadas",
            RuleKind.NUMBER,
            "Hours worked must be a valid number",
            min=0.25,
            max=24,
        ),
        ValidationRule(
            "descripcion", RuleKind.STRING, "Description must be a valid string", max=500
        ),
        ValidationRule("aprobado", RuleKind.BOOLEAN, "Approved flag must be true or false"),
        CREATED_AT,
        UPDATED_AT,
    ),
    relationships=(
        RelationshipRule("colaborador_id", "Personal", "The specified collaborator does not exist"),
        RelationshipRule("proyecto_id", "Proyectos", "The specified project does not exist"),
        RelationshipRule("actividad_id", "Actividades", "The specified activity does not exist"),
    ),
    business_rules=(
        BusinessRule(
            name="no_future_dates",
            description="Hours cannot be logged on future dates",
            validator=rules.no_future_dates("fecha"),
            message="Hours cannot be logged on future dates",
            field="fecha",
        ),
        BusinessRule(
            name="daily_hours_limit",
            description="At most 12 hours per collaborator per day",
            validator=rules.daily_hours_limit(),
            message="No more than 12 hours can be logged per day",
            field="horas_trabajadas",
        ),
        BusinessRule(
            name="collaborator_assignment",
            description="Collaborator is assigned to the project/activity",
            validator=rules.collaborator_assignment(),
            message="The collaborator is not assigned to this project/activity",
            field="colaborador_id",
        ),
    ),
)

BUILTIN_SCHEMAS = (
    USER_SCHEMA,
    MATERIAL_SCHEMA,
    PROJECT_SCHEMA,
    ACTIVITY_SCHEMA,
    CLIENT_SCHEMA,
    PERSONNEL_SCHEMA,
    BOM_SCHEMA,
    TIME_ENTRY_SCHEMA,
)


def default_registry() -> SchemaRegistry:
    """A fresh registry holding every built-in schema."""
    return SchemaRegistry(BUILTIN_SCHEMAS)
