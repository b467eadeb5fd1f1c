"""
Billing Back Office
Billing models.

Models:
    - BillingEntity: Customer/company that time and materials are attributed to
    - EntityEmail: Document mail recipients per billing entity
    - User, Project, Category, Article: Label lookups used by invoice lines
    - TimeRecord: One reported block of hours (billed once, via lock-and-mark)
    - MaterialItem: Article or free-text item attached to a time record
"""

from backoffice.models import db, utcnow


LANGUAGES = {"sv", "en"}


class BillingEntity(db.Model):
    """
    Customer/company record.

    Ownership is a single hop: an entity either bills itself
    (is_billing_owner or bill_direct) or is billed through owner_entity_id.
    """

    __tablename__ = "billing_entities"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    external_accounting_id = db.Column(db.String(50), unique=True, nullable=True,
                                       comment="Customer number in the accounting system")
    is_billing_owner = db.Column(db.Boolean, nullable=False, default=False)
    owner_entity_id = db.Column(db.Integer,
                                db.ForeignKey("billing_entities.id", ondelete="SET NULL"),
                                nullable=True, index=True)
    bill_direct = db.Column(db.Boolean, nullable=False, default=False)
    include_attachments_on_send = db.Column(db.Boolean, nullable=False, default=False,
                                            comment="Attach worklog PDF when the invoice is sent")
    language = db.Column(db.String(2), nullable=False, default="sv",
                         comment="Document/mail language: sv, en")

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    owner = db.relationship("BillingEntity", remote_side=[id], lazy="select")
    emails = db.relationship("EntityEmail", backref="billing_entity", lazy="select",
                             cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "external_accounting_id": self.external_accounting_id,
            "is_billing_owner": self.is_billing_owner,
            "owner_entity_id": self.owner_entity_id,
            "bill_direct": self.bill_direct,
            "include_attachments_on_send": self.include_attachments_on_send,
            "language": self.language,
        }

    def __repr__(self):
        return f"<BillingEntity {self.id}: {self.name}>"


class EntityEmail(db.Model):
    """Recipient address for a billing entity; send_pdf opts it into document mail."""

    __tablename__ = "billing_entity_emails"
    __table_args__ = (
        db.UniqueConstraint("billing_entity_id", "email", name="uq_entity_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    billing_entity_id = db.Column(db.Integer,
                                  db.ForeignKey("billing_entities.id", ondelete="CASCADE"),
                                  nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    send_pdf = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "billing_entity_id": self.billing_entity_id,
            "email": self.email,
            "send_pdf": self.send_pdf,
        }


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    billing_entity_id = db.Column(db.Integer,
                                  db.ForeignKey("billing_entities.id", ondelete="SET NULL"),
                                  nullable=True, index=True)


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)


class Article(db.Model):
    """Registered article (product/service) from the accounting system."""

    __tablename__ = "articles"

    id = db.Column(db.Integer, primary_key=True)
    article_number = db.Column(db.String(50), nullable=True, index=True)
    name = db.Column(db.String(200), nullable=True)
    unit = db.Column(db.String(20), nullable=True)

    def __repr__(self):
        return f"<Article {self.article_number}: {self.name}>"


class TimeRecord(db.Model):
    """
    One reported block of hours.

    Eligible for billing while billed is false and invoice_number is empty.
    Only the lock manager flips it to billed.
    """

    __tablename__ = "time_records"
    __table_args__ = (
        db.Index("ix_time_records_entity_date", "billing_entity_id", "date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True, index=True)
    billing_entity_id = db.Column(db.Integer,
                                  db.ForeignKey("billing_entities.id", ondelete="SET NULL"),
                                  nullable=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"),
                           nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"),
                            nullable=True)
    date = db.Column(db.Date, nullable=False, index=True)
    hours = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    billable = db.Column(db.Boolean, nullable=False, default=True)
    billed = db.Column(db.Boolean, nullable=False, default=False)
    invoice_number = db.Column(db.String(25), nullable=True, index=True)
    note = db.Column(db.Text, nullable=True)
    work_label = db.Column(db.String(200), nullable=True,
                           comment="Free-text work label shown on the invoice line")

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", lazy="joined")
    billing_entity = db.relationship("BillingEntity", lazy="joined")
    project = db.relationship("Project", lazy="joined")
    category = db.relationship("Category", lazy="joined")
    items = db.relationship("MaterialItem", backref="time_record", lazy="select",
                            cascade="all, delete-orphan", order_by="MaterialItem.id")

    def to_dict(self):
        return {
            "id": self.id,
            "owner_user_id": self.owner_user_id,
            "billing_entity_id": self.billing_entity_id,
            "project_id": self.project_id,
            "category_id": self.category_id,
            "date": self.date.isoformat() if self.date else None,
            "hours": float(self.hours or 0),
            "billable": self.billable,
            "billed": self.billed,
            "invoice_number": self.invoice_number,
            "note": self.note,
            "work_label": self.work_label,
        }

    def __repr__(self):
        return f"<TimeRecord {self.id} {self.date} {self.hours}h>"

    @classmethod
    def unbilled_clause(cls):
        """SQL predicate for rows still eligible for billing."""
        return db.and_(
            cls.billed.is_(False),
            db.or_(cls.invoice_number.is_(None), cls.invoice_number == ""),
        )

    @classmethod
    def billed_clause(cls):
        """SQL predicate for rows billed under an invoice number.

        Rows flagged billed without a number (or numbered but unflagged) match
        neither this nor unbilled_clause().
        """
        return db.and_(
            cls.billed.is_(True),
            cls.invoice_number.is_not(None),
            cls.invoice_number != "",
        )


class MaterialItem(db.Model):
    """
    Article or custom item reported on a time record.

    Billed independently of its parent: its own invoice_number marks it billed.
    """

    __tablename__ = "material_items"

    id = db.Column(db.Integer, primary_key=True)
    time_record_id = db.Column(db.Integer,
                               db.ForeignKey("time_records.id", ondelete="CASCADE"),
                               nullable=False, index=True)
    article_id = db.Column(db.Integer, db.ForeignKey("articles.id", ondelete="SET NULL"),
                           nullable=True, comment="NULL = custom free-text item")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    description = db.Column(db.String(255), nullable=True)
    invoice_number = db.Column(db.String(40), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    article = db.relationship("Article", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "time_record_id": self.time_record_id,
            "article_id": self.article_id,
            "quantity": self.quantity,
            "description": self.description,
            "invoice_number": self.invoice_number,
        }

    def __repr__(self):
        return f"<MaterialItem {self.id} x{self.quantity}>"

    @classmethod
    def unbilled_clause(cls):
        """SQL predicate for items still eligible for billing."""
        return db.or_(cls.invoice_number.is_(None), cls.invoice_number == "")

    @classmethod
    def billed_clause(cls):
        return db.and_(cls.invoice_number.is_not(None), cls.invoice_number != "")
