from flask_wtf import FlaskForm
from wtforms import BooleanField, EmailField, HiddenField, PasswordField, StringField, SubmitField
from wtforms.validators import DataRequired, Email, EqualTo, Length


class LoginForm(FlaskForm):
    email = EmailField('Email', validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=8)])
    remember = BooleanField('Remember me')
    submit = SubmitField('Log in')


class RegisterForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=255)])
    email = EmailField('Email', validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=8)])
    password_confirmation = PasswordField(
        'Confirm password',
        validators=[DataRequired(), EqualTo('password', message='The password confirmation does not match.')],
    )
    submit = SubmitField('Create account')


class ForgotPasswordForm(FlaskForm):
    # format is checked by the reset service, after the throttle check
    email = EmailField('Email')
    submit = SubmitField('Send reset link')


class ResetPasswordForm(FlaskForm):
    token = HiddenField('Token', validators=[DataRequired()])
    email = EmailField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('New password', validators=[DataRequired()])
    password_confirmation = PasswordField(
        'Confirm new password',
        validators=[DataRequired(), EqualTo('password', message='The password confirmation does not match.')],
    )
    submit = SubmitField('Reset password')


class ProfileForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=255)])
    email = EmailField('Email', validators=[DataRequired(), Email(), Length(max=255)])
    submit = SubmitField('Save')


class PasswordForm(FlaskForm):
    current_password = PasswordField('Current password', validators=[DataRequired()])
    password = PasswordField('New password', validators=[DataRequired()])
    password_confirmation = PasswordField(
        'Confirm new password',
        validators=[DataRequired(), EqualTo('password', message='The password confirmation does not match.')],
    )
    submit = SubmitField('Update password')


class LogoutForm(FlaskForm):
    submit = SubmitField('Log out')
