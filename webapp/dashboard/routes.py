"""
Dashboard Routes
Handles service management and the incident lifecycle for operators
"""

import logging

from flask import render_template, request, redirect, url_for, flash
from flask_login import login_required, current_user
from flask_wtf import FlaskForm
from wtforms import StringField, SelectField, SelectMultipleField, TextAreaField, SubmitField, widgets
from wtforms.validators import DataRequired, Length, Optional

from . import dashboard_bp
from status.aggregator import ServiceStatus, aggregate_status, get_status_display
from status.models import (
    Service, Incident, IncidentStatus, IncidentImpact,
    ServiceValidationError, IncidentValidationError
)

logger = logging.getLogger(__name__)

TABS = ('services', 'incidents')


# =============================================================================
# Forms
# =============================================================================

def _labelled(enum_cls):
    return [(member.value, member.value.capitalize()) for member in enum_cls]


class ServiceForm(FlaskForm):
    """Add or edit a service"""
    name = StringField('Service Name', validators=[
        DataRequired(message='Service name cannot be empty'),
        Length(max=255)
    ])
    status = SelectField('Status', choices=ServiceStatus.choices(),
                         default=ServiceStatus.OPERATIONAL.value)
    submit = SubmitField('Add Service')


class MultiCheckboxField(SelectMultipleField):
    widget = widgets.ListWidget(prefix_label=False)
    option_widget = widgets.CheckboxInput()


class IncidentForm(FlaskForm):
    """Open a new incident"""
    title = StringField('Title', validators=[Optional(), Length(max=255)])
    description = TextAreaField('Description')
    status = SelectField('Status', choices=_labelled(IncidentStatus),
                         default=IncidentStatus.INVESTIGATING.value)
    impact = SelectField('Impact', choices=_labelled(IncidentImpact),
                         default=IncidentImpact.MINOR.value)
    services = MultiCheckboxField('Affected Services', coerce=int)
    submit = SubmitField('Create Incident')


class IncidentUpdateForm(FlaskForm):
    """Post a timeline update"""
    text = TextAreaField('Update Message')
    status = SelectField('Status', choices=_labelled(IncidentStatus))
    submit = SubmitField('Post Update')


def _first_form_error(form):
    for errors in form.errors.values():
        if errors:
            return errors[0]
    return 'Please correct the errors below.'


def _not_found():
    return render_template('dashboard/incident_not_found.html', active_page='incidents'), 404


# =============================================================================
# Dashboard Home
# =============================================================================

@dashboard_bp.route('')
@login_required
def index():
    """Dashboard home with Services and Incidents tabs"""
    tab = request.args.get('tab', 'services')
    if tab not in TABS:
        tab = 'services'

    services = []
    incidents = []
    try:
        services = Service.get_all()
        if tab == 'incidents':
            incidents = Incident.get_all()
    except Exception as e:
        logger.error(f"Error loading dashboard: {e}")
        flash('Failed to connect to the database. Please try again.', 'error')

    return render_template('dashboard/index.html',
                           tab=tab,
                           services=services,
                           incidents=incidents,
                           overall=aggregate_status(services),
                           form=ServiceForm(formdata=None),
                           status_choices=ServiceStatus.choices(),
                           get_status_display=get_status_display,
                           active_page=tab)


# =============================================================================
# Service Management
# =============================================================================

@dashboard_bp.route('/services', methods=['POST'])
@login_required
def add_service():
    """Add a new service"""
    form = ServiceForm()

    if form.validate_on_submit():
        try:
            service = Service.create(form.name.data, form.status.data)
            logger.info(f"Service {service.id} added by operator {current_user.id}: {service.name}")
            flash('Service added successfully!', 'success')
        except ServiceValidationError as e:
            flash(str(e), 'error')
        except Exception as e:
            logger.error(f"Error adding service: {e}")
            flash(f'Error adding service: {e}', 'error')
    else:
        flash(_first_form_error(form), 'error')

    return redirect(url_for('dashboard.index', tab='services'))


@dashboard_bp.route('/services/<int:service_id>/update', methods=['POST'])
@login_required
def update_service(service_id):
    """Change the name or status of a service"""
    form = ServiceForm()

    if not form.validate_on_submit():
        flash(_first_form_error(form), 'error')
        return redirect(url_for('dashboard.index', tab='services'))

    try:
        service = Service.get_by_id(service_id)
        if not service:
            flash('Service not found.', 'error')
        else:
            old_status = service.status
            service.update(name=form.name.data, status=form.status.data)
            logger.info(
                f"Service {service.id} updated by operator {current_user.id}: "
                f"{old_status} -> {service.status}"
            )
            flash('Service updated successfully!', 'success')
    except ServiceValidationError as e:
        flash(str(e), 'error')
    except Exception as e:
        logger.error(f"Error updating service {service_id}: {e}")
        flash(f'Error updating service: {e}', 'error')

    return redirect(url_for('dashboard.index', tab='services'))


@dashboard_bp.route('/services/<int:service_id>/delete', methods=['POST'])
@login_required
def delete_service(service_id):
    """Delete a service (irreversible)"""
    try:
        service = Service.get_by_id(service_id)
        if service and service.delete():
            logger.info(f"Service {service_id} deleted by operator {current_user.id}")
            flash('Service deleted successfully!', 'success')
        else:
            flash('Service not found.', 'error')
    except Exception as e:
        logger.error(f"Error deleting service {service_id}: {e}")
        flash(f'Error deleting service: {e}', 'error')

    return redirect(url_for('dashboard.index', tab='services'))


# =============================================================================
# Incidents
# =============================================================================

@dashboard_bp.route('/incidents')
@login_required
def incidents():
    """All incidents, newest first"""
    incident_list = []
    try:
        incident_list = Incident.get_all()
    except Exception as e:
        logger.error(f"Error loading incidents: {e}")
        flash('Failed to load incidents. Please try again.', 'error')

    return render_template('dashboard/incidents.html',
                           incidents=incident_list,
                           active_page='incidents')


@dashboard_bp.route('/incidents/new', methods=['GET', 'POST'])
@login_required
def new_incident():
    """Open a new incident"""
    form = IncidentForm()

    try:
        form.services.choices = [(s.id, s.name) for s in Service.get_all()]
    except Exception as e:
        logger.error(f"Error fetching services: {e}")
        form.services.choices = []
        flash('Failed to load services. Please try again.', 'error')

    if form.is_submitted():
        if not form.validate():
            flash(_first_form_error(form), 'error')
        else:
            try:
                incident = Incident.create(
                    title=form.title.data,
                    description=form.description.data,
                    impact=form.impact.data,
                    status=form.status.data,
                    service_ids=form.services.data,
                    created_by=current_user.id
                )
                flash('Incident created.', 'success')
                return redirect(url_for('dashboard.incident_detail', incident_id=incident.id))
            except IncidentValidationError as e:
                flash(str(e), 'error')
            except Exception as e:
                logger.error(f"Error creating incident: {e}")
                flash('Failed to create incident. Please try again.', 'error')

    return render_template('dashboard/incident_form.html', form=form, active_page='incidents')


@dashboard_bp.route('/incidents/<int:incident_id>')
@login_required
def incident_detail(incident_id):
    """Incident details with its timeline"""
    try:
        incident = Incident.get_by_id(incident_id)
        services_by_id = {s.id: s.name for s in Service.get_all()}
    except Exception as e:
        logger.error(f"Error fetching incident {incident_id}: {e}")
        flash('Failed to load incident details. Please try again.', 'error')
        return redirect(url_for('dashboard.incidents'))

    if not incident:
        return _not_found()

    form = IncidentUpdateForm(formdata=None, status=incident.status)
    return render_template('dashboard/incident_detail.html',
                           incident=incident,
                           services_by_id=services_by_id,
                           form=form,
                           active_page='incidents')


@dashboard_bp.route('/incidents/<int:incident_id>/updates', methods=['POST'])
@login_required
def post_incident_update(incident_id):
    """Append a timeline update"""
    form = IncidentUpdateForm()

    try:
        incident = Incident.get_by_id(incident_id)
        if not incident:
            return _not_found()

        if incident.is_resolved:
            flash('This incident has been resolved.', 'info')
        elif not form.validate_on_submit():
            flash(_first_form_error(form), 'error')
        elif incident.post_update(form.text.data, form.status.data, created_by=current_user.id):
            logger.info(f"Incident {incident_id} updated by operator {current_user.id}: {incident.status}")
            flash('Update posted.', 'success')
    except IncidentValidationError as e:
        flash(str(e), 'error')
    except Exception as e:
        logger.error(f"Error updating incident {incident_id}: {e}")
        flash('Failed to update incident. Please try again.', 'error')

    return redirect(url_for('dashboard.incident_detail', incident_id=incident_id))


@dashboard_bp.route('/incidents/<int:incident_id>/resolve', methods=['POST'])
@login_required
def resolve_incident(incident_id):
    """Resolve an incident"""
    try:
        incident = Incident.get_by_id(incident_id)
        if not incident:
            return _not_found()

        if incident.is_resolved:
            flash('This incident is already resolved.', 'info')
        else:
            incident.resolve(created_by=current_user.id)
            logger.info(f"Incident {incident_id} resolved by operator {current_user.id}")
            flash('Incident resolved.', 'success')
    except Exception as e:
        logger.error(f"Error resolving incident {incident_id}: {e}")
        flash('Failed to resolve incident. Please try again.', 'error')

    return redirect(url_for('dashboard.incident_detail', incident_id=incident_id))
