"""
Flask route handlers for the front office.
"""

import sys
import traceback

from flask import (
    Response,
    abort,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from werkzeug.exceptions import HTTPException

from clinicdesk.client import ApiError, RequestCancelled, SessionExpired
from clinicdesk.config import (
    BASE_URL,
    FORM_CLOSE_DELAY_SECONDS,
    LOGIN_ROUTE,
    REQUEST_TIMEOUT_SECONDS,
    SEARCH_DEBOUNCE_MS,
)
from clinicdesk.export import to_csv
from clinicdesk.pages import PAGES
from clinicdesk.rbac import home_for, load_user, menu_for, user_summary
from clinicdesk.select import SelectInput
from clinicdesk.web.auth import (
    cleanup_expired_sessions,
    controller_for,
    current_entry,
    ensure_session,
    gate,
    page_required,
    role_required,
    sessions,
)


def register_routes(app):
    """Register all routes on the Flask *app*."""

    @app.context_processor
    def inject_layout():
        entry = getattr(request, "entry", None)
        user = entry["store"].user if entry else None
        menu = [PAGES[slug] for slug in menu_for(user.role if user else None) if slug in PAGES]
        return {"current_user": user, "menu": menu}

    # ── Health ───────────────────────────────────────────────────────

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({
            "service": "ClinicDesk",
            "status": "healthy",
            "backend": BASE_URL,
            "active_sessions": len(sessions),
        }), 200

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/login", methods=["GET", "POST"])
    def login():
        entry = current_entry()
        store, client = entry["store"], entry["client"]
        notice = None
        if entry["expired_notice"]:
            notice = "Your session has expired. Please log in again."
            entry["expired_notice"] = False

        if request.method == "GET":
            ensure_session(entry)
            if store.is_authenticated():
                return redirect(home_for(store.role))
            return render_template("login.html", notice=notice, error=None, email="")

        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        if not email or not password:
            return render_template("login.html", notice=None, email=email,
                                   error="Email and password are required"), 400

        try:
            body = client.login({"email": email, "password": password})
            user = load_user(body)
        except ApiError as e:
            return render_template("login.html", notice=None, email=email, error=e.message), 401
        except ValueError as e:
            return render_template("login.html", notice=None, email=email, error=str(e)), 401

        store.set(user, client.token_expiry())
        entry["pages"].clear()
        cleanup_expired_sessions()
        print(f"[auth] Logged in: {user.name} (role={user.role})")
        return redirect(home_for(user.role))

    @app.route("/logout", methods=["POST"])
    def logout():
        entry = current_entry()
        entry["client"].logout()
        entry["store"].clear()
        entry["pages"].clear()
        return redirect(LOGIN_ROUTE)

    @app.route("/", methods=["GET"])
    @role_required()
    def index():
        return redirect(home_for(request.entry["store"].role))

    @app.route("/me", methods=["GET"])
    @role_required()
    def me():
        return jsonify({"success": True, "user": user_summary(request.entry["store"].user)}), 200

    @app.route("/not-authorized", methods=["GET"])
    def not_authorized():
        request.entry = current_entry()
        return render_template("not_authorized.html"), 403

    # ── Pages: list ──────────────────────────────────────────────────

    def _list_url(slug):
        return url_for("page_list", slug=slug)

    def _render_page(controller, status=200):
        return render_template(
            "page.html",
            controller=controller,
            definition=controller.definition,
            debounce_ms=SEARCH_DEBOUNCE_MS,
        ), status

    @app.route("/<slug>", methods=["GET"])
    @page_required
    def page_list(slug):
        controller = request.controller
        controller.load_options()
        controller.apply_query(request.args)
        controller.refresh()
        if controller.forbidden:
            return render_template("not_authorized.html", message=controller.error), 403
        controller.load_summary()
        return _render_page(controller)

    @app.route("/<slug>/rows", methods=["GET"])
    @page_required
    def page_rows(slug):
        controller = request.controller
        pending = controller.search(request.args.get("q", ""))
        pending.wait(timeout=REQUEST_TIMEOUT_SECONDS + SEARCH_DEBOUNCE_MS / 1000.0)
        if pending.superseded or not pending.done or isinstance(pending.error, RequestCancelled):
            return "", 204
        if pending.error is not None:
            raise pending.error
        return render_template("components/rows.html", controller=controller), 200

    @app.route("/<slug>/export.csv", methods=["GET"])
    @page_required
    def page_export(slug):
        controller = request.controller
        csv_text = to_csv(controller.definition.all_fields, controller.table.records)
        return Response(
            csv_text,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={slug}.csv"},
        )

    # ── Pages: form ──────────────────────────────────────────────────

    def _render_form(controller, status=200):
        form = controller.form
        close_url = _list_url(controller.slug) if form.status_ok else None
        return render_template(
            "form.html",
            controller=controller,
            form=form,
            action=request.path,
            close_url=close_url,
            close_delay=FORM_CLOSE_DELAY_SECONDS,
        ), status

    @app.route("/<slug>/new", methods=["GET", "POST"])
    @page_required
    def page_new(slug):
        controller = request.controller
        controller.load_options()
        form = controller.form
        if request.method == "GET" or not form.is_open or form.is_edit:
            controller.open_create()
            if request.method == "GET":
                return _render_form(controller)
        controller.submit_form(request.form.to_dict())
        return _render_form(controller)

    @app.route("/<slug>/<record_id>/edit", methods=["GET", "POST"])
    @page_required
    def page_edit(slug, record_id):
        controller = request.controller
        controller.load_options()
        form = controller.form
        editing_this = form.is_open and form.is_edit and form.url_path.endswith(f"/{record_id}")
        if request.method == "GET" or not editing_this:
            if controller.find_record(record_id) is None:
                controller.refresh()
            if not controller.open_edit(record_id):
                abort(404)
            if request.method == "GET":
                return _render_form(controller)
        controller.submit_form(request.form.to_dict())
        return _render_form(controller)

    @app.route("/<slug>/form/cancel", methods=["GET", "POST"])
    @page_required
    def page_form_cancel(slug):
        request.controller.form.cancel()
        return redirect(_list_url(slug))

    @app.route("/<slug>/multi", methods=["GET", "POST"])
    @page_required
    def page_multi(slug):
        controller = request.controller
        if not controller.definition.multi_type_field:
            abort(404)
        controller.load_options()
        form = controller.multi_form(fresh=request.method == "GET")
        close_url = None
        if request.method == "POST":
            if not form.update(request.form, request.form.getlist("types"),
                               token=request.form.get("form_token", "")):
                print(f"[multi] Ignored duplicate submit on {slug}")
                flash("That form was already submitted or has expired.", "error")
                return redirect(_list_url(slug))
            if form.submit(controller.client, controller.definition.resource,
                           on_refresh=controller.refresh):
                close_url = _list_url(slug)
        return render_template(
            "multi.html",
            controller=controller,
            form=form,
            action=request.path,
            close_url=close_url,
            close_delay=FORM_CLOSE_DELAY_SECONDS,
        ), 200

    # ── Pages: row actions ───────────────────────────────────────────

    @app.route("/<slug>/<int:index>/delete", methods=["GET", "POST"])
    @page_required
    def page_delete(slug, index):
        controller = request.controller
        if request.method == "GET":
            record = controller.request_remove(index)
            if record is None:
                abort(404)
            return render_template("confirm_delete.html", controller=controller,
                                   index=index, record=record), 200

        if request.form.get("confirm") != "yes":
            controller.table.cancel_remove()
            return redirect(_list_url(slug))
        if controller.confirm_remove():
            flash("Record deleted.", "success")
        else:
            flash(controller.table.error or "Failed to delete record.", "error")
        return redirect(_list_url(slug))

    @app.route("/<slug>/<int:index>/print", methods=["GET"])
    @page_required
    def page_print(slug, index):
        view = request.controller.print_record(index)
        if view is None:
            abort(404)
        return view.render(back_url=_list_url(slug))

    @app.route("/<slug>/print", methods=["POST"])
    @page_required
    def page_print_batch(slug):
        indices = [int(i) for i in request.form.getlist("selected") if i.isdigit()]
        view = request.controller.print_batch(indices)
        if view is None:
            flash("Select at least one record to print.", "error")
            return redirect(_list_url(slug))
        return view.render(back_url=_list_url(slug))

    # ── Server-driven select ─────────────────────────────────────────

    @app.route("/ui/select", methods=["POST"])
    def ui_select():
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        data = request.json
        slug = data.get("page", "")
        if slug not in PAGES:
            return jsonify({"error": "Unknown page"}), 404

        if gate(PAGES[slug].allowed_roles) is not None:
            return jsonify({"error": "Not authorized"}), 403

        controller = controller_for(request.entry, slug)
        controller.load_options()
        field = controller.field(data.get("field", ""))
        if field is None or field.type != "select":
            return jsonify({"error": "Unknown select field"}), 404

        select = SelectInput.from_state(field.options, data.get("state") or {}, name=field.name)
        event = data.get("event") or {}
        kind = event.get("type")
        if kind == "toggle":
            select.toggle()
        elif kind == "search":
            select.type(str(event.get("value", "")))
        elif kind == "key":
            select.key(str(event.get("value", "")))
        elif kind == "outside":
            select.click_outside()
        elif kind == "choose":
            for option in select.filtered:
                if str(option.value) == str(event.get("value")):
                    select.choose(option)
                    break
        return jsonify({"state": select.to_state(), "html": select.render()}), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(SessionExpired)
    def session_expired(e):
        return redirect(LOGIN_ROUTE)

    @app.errorhandler(ApiError)
    def api_error(e):
        if e.status == 403:
            return render_template("not_authorized.html", message=e.message), 403
        return render_template("error.html", message=e.message), 502

    @app.errorhandler(404)
    def not_found(e):
        return render_template("error.html", message="Page not found"), 404

    @app.errorhandler(Exception)
    def unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        print(f"[ERROR] Unhandled error on {request.path}: {e}", file=sys.stderr)
        traceback.print_exc()
        return render_template("error.html", message="Something went wrong."), 500
