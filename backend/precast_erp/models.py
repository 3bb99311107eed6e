"""SQLAlchemy models for the precast ERP core."""
from sqlalchemy import (
    Boolean, Column, String, Integer, Float, Date, DateTime, Text,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, ARRAY
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


LIFECYCLE_STATES = (
    'Produced', 'InStockyard', 'ReservedForDispatch', 'InTransit', 'ReceivedAtSite', 'Erected',
)
ELEMENT_STATUSES = ('Planned', 'In Production', 'In Stockyard', 'Dispatch', 'In Erection', 'Erected')
DISPATCH_STATUSES = ('Dispatched', 'In Transit', 'Accepted', 'Received')
ERECTION_LOG_STATUSES = ('Pending', 'Approved', 'Rejected', 'Received', 'Erected')


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(String(50), nullable=False, index=True)
    fcm_token = Column(Text, nullable=True)  # NULL when the device never registered
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            role.in_([
                'superadmin', 'admin', 'project_manager', 'stockyard_manager',
                'dispatcher', 'site_engineer', 'viewer',
            ]),
            name='chk_user_role'
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserSession(Base):
    """Opaque login session; the id is sent verbatim in the Authorization header."""
    __tablename__ = "session"

    session_id = Column(String(255), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    host_name = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User")


class Client(Base):
    """Client (customer account) owned by a user."""
    __tablename__ = "client"

    client_id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class EndClient(Base):
    """End client billed by work orders."""
    __tablename__ = "end_client"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("client.client_id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    abbreviation = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Project(Base):
    """Construction project."""
    __tablename__ = "project"

    project_id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    abbreviation = Column(String(50), nullable=False)
    client_id = Column(Integer, ForeignKey("end_client.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ProjectMember(Base):
    """Project membership used for notification fan-out."""
    __tablename__ = "project_members"

    project_id = Column(Integer, ForeignKey("project.project_id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)


class Precast(Base):
    """Tower/floor hierarchy node; floors point at their tower through parent_id."""
    __tablename__ = "precast"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(Integer, ForeignKey("precast.id"), nullable=True, index=True)
    prefix = Column(String(50), nullable=True)


class Stockyard(Base):
    """Physical staging yard."""
    __tablename__ = "stockyards"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=True, index=True)
    yard_name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)


class ElementType(Base):
    """Element type with nominal geometry (millimetres) and density (kg/m3)."""
    __tablename__ = "element_type"

    element_type_id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    element_type = Column(String(100), nullable=False)
    element_type_name = Column(String(255), nullable=False)
    thickness = Column(Float, nullable=False)
    length = Column(Float, nullable=False)
    height = Column(Float, nullable=False)
    mass = Column(Float, nullable=True)
    density = Column(Float, nullable=False)


class Element(Base):
    """Identified physical piece to be produced."""
    __tablename__ = "element"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id"), nullable=False, index=True)
    element_name = Column(String(255), nullable=False)
    target_location = Column(Integer, ForeignKey("precast.id"), nullable=True, index=True)
    status = Column(String(50), nullable=False, default='Planned')
    disable = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(list(ELEMENT_STATUSES)), name='chk_element_status'),
    )


class PrecastStock(Base):
    """Produced precast item and its position in the element lifecycle."""
    __tablename__ = "precast_stock"

    id = Column(Integer, primary_key=True)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, unique=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    element_type = Column(String(100), nullable=False)
    element_type_id = Column(Integer, ForeignKey("element_type.element_type_id"), nullable=False, index=True)
    stockyard_id = Column(Integer, ForeignKey("stockyards.id"), nullable=True)
    storage_location = Column(String(255), nullable=False, default='default_location')
    thickness = Column(Float, nullable=False)
    length = Column(Float, nullable=False)
    height = Column(Float, nullable=False)
    weight = Column(Float, nullable=False)
    target_location = Column(Integer, ForeignKey("precast.id"), nullable=True, index=True)
    lifecycle_state = Column(String(30), nullable=False, default='Produced', index=True)
    order_by_erection = Column(Boolean, nullable=False, default=False)
    production_date = Column(DateTime(timezone=True), nullable=True)
    dispatch_start = Column(DateTime(timezone=True), nullable=True)
    dispatch_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(lifecycle_state.in_(list(LIFECYCLE_STATES)), name='chk_precast_stock_lifecycle'),
        # Erected items must have passed an erection request.
        CheckConstraint(
            "lifecycle_state <> 'Erected' OR order_by_erection",
            name='chk_precast_stock_erected_requested'
        ),
        Index('idx_precast_stock_project_state', 'project_id', 'lifecycle_state'),
        Index('idx_precast_stock_erection_queue', 'element_type_id', 'target_location', 'id',
              postgresql_where=(order_by_erection == False)),  # noqa: E712
    )


class PrecastStockApprovalLog(Base):
    """Append-only log of stockyard receipts."""
    __tablename__ = "precast_stock_approval_logs"

    id = Column(Integer, primary_key=True)
    precast_stock_id = Column(Integer, ForeignKey("precast_stock.id"), nullable=False, index=True)
    element_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    acted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    comments = Column(Text, nullable=True)
    element_type = Column(String(100), nullable=True)
    element_type_name = Column(String(255), nullable=True)
    action_timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)


class VehicleDetails(Base):
    """Truck and driver registry keyed by vehicle number."""
    __tablename__ = "vehicle_details"

    id = Column(Integer, primary_key=True)
    vehicle_number = Column(String(50), unique=True, nullable=False, index=True)
    driver_name = Column(String(255), nullable=False)
    driver_contact_no = Column(String(50), nullable=False)
    emergency_contact_phone_no = Column(String(50), nullable=True)
    capacity = Column(String(50), nullable=False)
    transporter_id = Column(Integer, nullable=False)
    truck_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default='active')
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class DispatchOrder(Base):
    """Trip carrying a set of elements from a stockyard to the erection site."""
    __tablename__ = "dispatch_orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(20), unique=True, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    dispatch_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default='Dispatched')
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(list(DISPATCH_STATUSES)), name='chk_dispatch_order_status'),
    )

    # Relationships
    details = relationship("DispatchDetail", back_populates="order", cascade="all, delete-orphan")
    items = relationship("DispatchOrderItem", back_populates="order", cascade="all, delete-orphan")


class DispatchDetail(Base):
    """Vehicle/driver leg of a dispatch order; the latest row carries the current status."""
    __tablename__ = "dispatch_details"

    id = Column(Integer, primary_key=True)
    dispatch_order_id = Column(Integer, ForeignKey("dispatch_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicle_details.id"), nullable=False)
    driver_name = Column(String(255), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    current_status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(current_status.in_(list(DISPATCH_STATUSES)), name='chk_dispatch_detail_status'),
    )

    # Relationships
    order = relationship("DispatchOrder", back_populates="details")


class DispatchOrderItem(Base):
    """Link between a dispatch order and one element."""
    __tablename__ = "dispatch_order_items"

    id = Column(Integer, primary_key=True)
    dispatch_order_id = Column(Integer, ForeignKey("dispatch_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('dispatch_order_id', 'element_id', name='uq_dispatch_order_item'),
    )

    # Relationships
    order = relationship("DispatchOrder", back_populates="items")


class DispatchTrackingLog(Base):
    """Append-only tracking events of a dispatch order."""
    __tablename__ = "dispatch_tracking_logs"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(20), ForeignKey("dispatch_orders.order_number"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    location = Column(String(100), nullable=False)
    remarks = Column(Text, nullable=True)
    status_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(status.in_(list(DISPATCH_STATUSES)), name='chk_tracking_status'),
        CheckConstraint(
            location.in_(['Stockyard', 'Truck', 'Received in Erection Site']),
            name='chk_tracking_location'
        ),
    )


class StockErected(Base):
    """Erection request for one stock item."""
    __tablename__ = "stock_erected"

    id = Column(Integer, primary_key=True)
    precast_stock_id = Column(Integer, ForeignKey("precast_stock.id"), nullable=False, index=True)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    order_at = Column(DateTime(timezone=True), nullable=False)
    # NULL = pending decision, True = approved, False = rejected.
    approved_status = Column(Boolean, nullable=True)
    received_in_erection = Column(Boolean, nullable=False, default=False)
    erected = Column(Boolean, nullable=False, default=False)
    action_approve_or_reject = Column(DateTime(timezone=True), nullable=True)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    logs = relationship("StockErectedLog", back_populates="request")


class StockErectedLog(Base):
    """Append-only log of an erection request."""
    __tablename__ = "stock_erected_logs"

    id = Column(Integer, primary_key=True)
    stock_erected_id = Column(Integer, ForeignKey("stock_erected.id"), nullable=False, index=True)
    element_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    acted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    comments = Column(Text, nullable=True)
    action_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(status.in_(list(ERECTION_LOG_STATUSES)), name='chk_stock_erected_log_status'),
    )

    # Relationships
    request = relationship("StockErected", back_populates="logs")


class WorkOrder(Base):
    """Live (latest) work order row."""
    __tablename__ = "work_order"

    id = Column(Integer, primary_key=True)
    wo_number = Column(String(100), nullable=False, index=True)
    wo_date = Column(Date, nullable=True)
    wo_validate = Column(Date, nullable=True)
    total_value = Column(Float, nullable=False, default=0)
    contact_person = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_number = Column(String(50), nullable=True)
    phone_code = Column(Integer, nullable=True)
    payment_term = Column(JSONB, default={})
    wo_description = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)
    endclient_id = Column(Integer, ForeignKey("end_client.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("project.project_id"), nullable=False, index=True)
    shipped_address = Column(Text, nullable=True)
    billed_address = Column(Text, nullable=True)
    revision = Column(Integer, nullable=False, default=0)
    recurrence_patterns = Column(JSONB, default=[])
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    materials = relationship(
        "WorkOrderMaterial", back_populates="work_order", cascade="all, delete-orphan",
        order_by="WorkOrderMaterial.id",
    )
    attachments = relationship(
        "WorkOrderAttachment", back_populates="work_order", cascade="all, delete-orphan",
        order_by="WorkOrderAttachment.id",
    )


class WorkOrderMaterial(Base):
    """Material line of a work order; invoices consume its volume."""
    __tablename__ = "work_order_material"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    unit_rate = Column(Float, nullable=False, default=0)
    volume = Column(Float, nullable=False, default=0)
    volume_used = Column(Float, nullable=False, default=0)
    tax = Column(Float, nullable=False, default=0)
    hsn_code = Column(Integer, nullable=True)
    tower_id = Column(Integer, ForeignKey("precast.id"), nullable=True)
    floor_id = Column(ARRAY(Integer), default=[])

    # Relationships
    work_order = relationship("WorkOrder", back_populates="materials")


class WorkOrderAttachment(Base):
    """Attachment URL of a work order."""
    __tablename__ = "work_order_attachment"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False, index=True)
    file_url = Column(Text, nullable=False)

    # Relationships
    work_order = relationship("WorkOrder", back_populates="attachments")


class WorkOrderRevision(Base):
    """Frozen snapshot of a work order taken right before an update."""
    __tablename__ = "work_order_revision"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False, index=True)
    revision_no = Column(Integer, nullable=False)
    wo_number = Column(String(100), nullable=False)
    wo_date = Column(Date, nullable=True)
    wo_validate = Column(Date, nullable=True)
    total_value = Column(Float, nullable=False, default=0)
    contact_person = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_number = Column(String(50), nullable=True)
    phone_code = Column(Integer, nullable=True)
    payment_term = Column(JSONB, default={})
    wo_description = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)
    endclient_id = Column(Integer, nullable=False)
    project_id = Column(Integer, nullable=False)
    shipped_address = Column(Text, nullable=True)
    billed_address = Column(Text, nullable=True)
    recurrence_patterns = Column(JSONB, default=[])
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('work_order_id', 'revision_no', name='uq_work_order_revision_no'),
    )

    # Relationships
    materials = relationship("WorkOrderMaterialRevision", order_by="WorkOrderMaterialRevision.id")
    attachments = relationship("WorkOrderAttachmentRevision", order_by="WorkOrderAttachmentRevision.id")


class WorkOrderMaterialRevision(Base):
    """Material line frozen with its revision."""
    __tablename__ = "work_order_material_revision"

    id = Column(Integer, primary_key=True)
    work_order_revision_id = Column(
        Integer, ForeignKey("work_order_revision.id", ondelete="CASCADE"), nullable=False, index=True
    )
    work_order_id = Column(Integer, ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    unit_rate = Column(Float, nullable=False, default=0)
    volume = Column(Float, nullable=False, default=0)
    volume_used = Column(Float, nullable=False, default=0)
    tax = Column(Float, nullable=False, default=0)
    hsn_code = Column(Integer, nullable=True)
    tower_id = Column(Integer, nullable=True)
    floor_id = Column(ARRAY(Integer), default=[])


class WorkOrderAttachmentRevision(Base):
    """Attachment frozen with its revision."""
    __tablename__ = "work_order_attachment_revision"

    id = Column(Integer, primary_key=True)
    work_order_revision_id = Column(
        Integer, ForeignKey("work_order_revision.id", ondelete="CASCADE"), nullable=False, index=True
    )
    work_order_id = Column(Integer, ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False, index=True)
    file_url = Column(Text, nullable=False)


class Invoice(Base):
    """Invoice against a work order; stays a draft until submitted."""
    __tablename__ = "invoice"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_order.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    revision_no = Column(Integer, nullable=False)
    billing_address = Column(Text, nullable=True)
    shipping_address = Column(Text, nullable=True)
    total_amount = Column(Float, nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default='pending')
    indraft = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('work_order_id', 'revision_no', name='uq_invoice_revision_no'),
        CheckConstraint(payment_status.in_(['pending', 'partial', 'paid']), name='chk_invoice_payment_status'),
    )

    # Relationships
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan")


class InvoiceItem(Base):
    """Invoice line consuming volume of a work-order material."""
    __tablename__ = "invoice_item"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    # no FK: a line dropped from the work order keeps its invoices
    item_id = Column(Integer, nullable=False, index=True)
    item_name = Column(String(255), nullable=True)
    volume = Column(Float, nullable=False)
    hsn_code = Column(Integer, nullable=True)

    # Relationships
    invoice = relationship("Invoice", back_populates="items")


class ActivityLog(Base):
    """Who-did-what trail written after the business transaction commits."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True)
    event_context = Column(String(50), nullable=False, index=True)
    event_name = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    user_name = Column(String(255), nullable=True)
    host_name = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    project_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class Notification(Base):
    """In-app notification."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default='unread')
    action = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(['unread', 'read']), name='chk_notification_read_status'),
    )


class NotificationOutbox(Base):
    """
    Push notification outbox - ONE ROW PER RECIPIENT.
    Supports concurrent processing with SELECT FOR UPDATE SKIP LOCKED.
    """
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, nullable=True, index=True)
    recipient_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_token = Column(Text, nullable=False)  # push token snapshot
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    meta_data = Column(JSONB, default={})  # 'metadata' is reserved by SQLAlchemy

    status = Column(String(20), default='pending', index=True)  # pending/sent/failed/skipped
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    idempotency_key = Column(String(255), unique=True, nullable=False)  # kind:reference:user_id

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            status.in_(['pending', 'sent', 'failed', 'skipped']),
            name='chk_notification_outbox_status'
        ),
        Index('idx_outbox_pending_retry', 'status', 'next_retry_at',
              postgresql_where=(status == 'pending')),
    )
