from flask_wtf import FlaskForm
from flask_babel import lazy_gettext as _l
from wtforms import StringField, PasswordField, BooleanField
from wtforms.validators import DataRequired, Email, Length, EqualTo, Optional


class RegistrationForm(FlaskForm):
    email = StringField(_l("Email"), validators=[DataRequired(), Email(), Length(max=120)])
    name = StringField(_l("Name"), validators=[Optional(), Length(max=120)])
    password = PasswordField(
        _l("Password"),
        validators=[DataRequired(), Length(min=8, max=128, message=_l("Use at least 8 characters"))],
    )
    confirm = PasswordField(_l("Confirm Password"), validators=[DataRequired(), EqualTo("password")])


class LoginForm(FlaskForm):
    email = StringField(_l("Email"), validators=[DataRequired()])
    password = PasswordField(_l("Password"), validators=[DataRequired()])
    remember = BooleanField(_l("Remember me"))


class ChangePasswordForm(FlaskForm):
    current_password = PasswordField(_l("Current password"), validators=[DataRequired()])
    new_password = PasswordField(
        _l("New password"),
        validators=[DataRequired(), Length(min=8, max=128, message=_l("Use at least 8 characters"))],
    )


class ProfileForm(FlaskForm):
    name = StringField(_l("Name"), validators=[DataRequired(), Length(max=120)])
    notifications_enabled = BooleanField(_l("Email me when a secret is viewed"))
