from datetime import datetime, timezone
from bankvault import db


def _utcnow():
    return datetime.now(timezone.utc)


class BankAccount(db.Model):
    """Customer bank account"""
    __tablename__ = 'bank_accounts'

    id = db.Column(db.Integer, primary_key=True)
    owner_name = db.Column(db.String(255), nullable=False)
    bank_name = db.Column(db.String(255), nullable=False)
    account_number = db.Column(db.String(50), unique=True, nullable=False)
    balance_cents = db.Column(db.BigInteger, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    # Relationship
    transactions = db.relationship('Transaction', back_populates='account', cascade='all, delete-orphan', lazy='dynamic')

    def __repr__(self):
        return f'<BankAccount {self.account_number} bank={self.bank_name}>'


class Transaction(db.Model):
    """Account transaction (credit or debit)"""
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('bank_accounts.id'), nullable=False)
    kind = db.Column(db.String(10), nullable=False)  # credit, debit
    amount_cents = db.Column(db.BigInteger, nullable=False)
    description = db.Column(db.String(500))
    booked_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    # Relationship
    account = db.relationship('BankAccount', back_populates='transactions')

    def __repr__(self):
        return f'<Transaction account_id={self.account_id} kind={self.kind} amount={self.amount_cents}>'
