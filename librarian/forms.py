from flask_wtf import FlaskForm
from wtforms import StringField, IntegerField, PasswordField, SelectField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp

from .models import BOOK_STATUSES, MEMBER_STATUSES

EMAIL = Regexp(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", message="Invalid email address.")


class NullableIntegerField(IntegerField):
    """IntegerField that reads a JSON null as an absent value."""

    def process_formdata(self, valuelist):
        if valuelist and valuelist[0] is None:
            self.raw_data = []
            return
        super().process_formdata(valuelist)


class BookForm(FlaskForm):
    title = StringField("Title", validators=[DataRequired()])
    author = StringField("Author", validators=[DataRequired()])
    isbn = StringField("ISBN")
    publisher = StringField("Publisher")
    category = StringField("Category")
    publication_year = NullableIntegerField("Publication year", validators=[Optional()])
    cover_image_url = StringField("Cover image URL")
    total_copies = NullableIntegerField("Total copies", default=1, validators=[NumberRange(min=1)])
    status = SelectField(
        "Status", choices=[(s, s) for s in BOOK_STATUSES], default="available"
    )


class MemberForm(FlaskForm):
    full_name = StringField("Full name", validators=[DataRequired()])
    email = StringField("Email", validators=[DataRequired(), EMAIL])
    phone = StringField("Phone")
    address = StringField("Address")
    status = SelectField(
        "Status", choices=[(s, s) for s in MEMBER_STATUSES], default="active"
    )


class ImportForm(FlaskForm):
    count = NullableIntegerField("Number of Books", default=20, validators=[NumberRange(min=1, max=500)])
    title = StringField("Title Filter")
    authors = StringField("Author Filter")


class CheckoutForm(FlaskForm):
    member_id = NullableIntegerField("Member", validators=[DataRequired()])
    book_id = NullableIntegerField("Book", validators=[DataRequired()])
    due_days = NullableIntegerField("Loan days", validators=[Optional(), NumberRange(min=1)])


class MemberCheckoutForm(FlaskForm):
    book_id = NullableIntegerField("Book", validators=[DataRequired()])
    due_days = NullableIntegerField("Loan days", validators=[Optional(), NumberRange(min=1)])


class RenewForm(FlaskForm):
    extend_days = NullableIntegerField("Extend by days", validators=[Optional(), NumberRange(min=1)])


class SignupForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired(), EMAIL])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=6)])
    full_name = StringField("Full name", validators=[DataRequired()])
    phone = StringField("Phone")


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired()])
    password = PasswordField("Password", validators=[DataRequired()])
