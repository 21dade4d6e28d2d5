# app.py
import io
import logging
import time
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, g, jsonify, request
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from auth import AuthService, TokenManager, UserService
from config import Config
from errors import (
    CODE_INVALID_PAGE,
    CODE_INVALID_PAGE_SIZE,
    CODE_INVALID_REQUEST,
    CODE_LOGIN_REQUIRED,
    CODE_NOT_FOUND,
    CODE_SUCCESS,
    CODE_SYSTEM_ERROR,
    CODE_VALIDATION_ERROR,
    AppError,
    Forbidden,
    Unauthorized,
    ValidationError,
    get_error_message,
)
from importer import read_words
from models import ROLE_ADMIN, ROLE_USER, db
from schemas import (
    AuthResult,
    BatchMarkStatusRequest,
    ChangePasswordRequest,
    ForgetAllRequest,
    ForgetWordsRequest,
    LoginRequest,
    RegisterRequest,
    Schema,
    UpdateProfileRequest,
    UserOut,
    WordMarkRequest,
    WordRequest,
)
from services import VocabularyService, WordTagService
from stores import UserStore, WordStore, WordTagStore

logger = logging.getLogger(__name__)

DEFAULT_RANDOM_COUNT = 10
TRUE_VALUES = ('1', 'true', 'yes', 'on')

api = Blueprint('api', __name__)


# --- 响应信封 ---

def _dump(value):
    if isinstance(value, Schema):
        return value.dump()
    if isinstance(value, (list, tuple)):
        return [_dump(item) for item in value]
    return value


def success(data=None, msg=None, status=200):
    """成功响应: {code: 0, data?, msg?}"""
    body = {'code': CODE_SUCCESS}
    if data is not None:
        body['data'] = _dump(data)
    if msg:
        body['msg'] = msg
    return jsonify(body), status


def failure(code, msg, status):
    return jsonify({'code': code, 'msg': msg}), status


# --- 服务装配 ---

def vocabulary_service():
    session = db.session
    return VocabularyService(
        WordStore(session), WordTagStore(session), UserStore(session),
        page_size=current_app.config['PAGE_SIZE'],
        max_page_size=current_app.config['MAX_PAGE_SIZE'],
    )


def word_tag_service():
    session = db.session
    return WordTagService(WordTagStore(session), WordStore(session), UserStore(session))


def auth_service():
    return AuthService(UserStore(db.session), TokenManager.from_config(current_app.config))


def user_service():
    return UserService(
        UserStore(db.session),
        page_size=current_app.config['PAGE_SIZE'],
        max_page_size=current_app.config['MAX_PAGE_SIZE'],
    )


# --- 认证 ---

def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def _authenticate(token):
    user = auth_service().validate_token(token)
    g.current_user = user
    g.user_id = user.id
    g.user_role = user.role


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            raise Unauthorized("authorization header required", code=CODE_LOGIN_REQUIRED)
        _authenticate(token)
        return f(*args, **kwargs)
    return decorated


def optional_auth(f):
    """有合法令牌时识别用户, 没有或无效时按匿名访问处理"""
    @wraps(f)
    def decorated(*args, **kwargs):
        g.current_user = g.user_id = g.user_role = None
        token = _bearer_token()
        if token is not None:
            try:
                _authenticate(token)
            except Unauthorized as e:
                logger.debug("Ignoring invalid token on optional auth route: %s", e)
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if g.user_role != ROLE_ADMIN:
            raise Forbidden("admin access required")
        return f(*args, **kwargs)
    return decorated


# --- 请求参数 ---

def parse_body(schema):
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    return schema.model_validate(payload)


def int_arg(*names, code=CODE_INVALID_REQUEST):
    """依次读取多个参数名中第一个出现的整数参数"""
    for name in names:
        raw = request.args.get(name)
        if raw is None or raw.strip() == '':
            continue
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", code=code)
    return None


def pagination_args():
    page = int_arg('page', 'pageNum', code=CODE_INVALID_PAGE)
    page_size = int_arg('pageSize', code=CODE_INVALID_PAGE_SIZE)
    return page, page_size


# --- 单词 ---

@api.route('/words', methods=['GET'])
@optional_auth
def list_words():
    page, page_size = pagination_args()
    service = vocabulary_service()
    user_id = g.get('user_id')
    if user_id:
        return success(service.get_words_by_page_with_marks(page, page_size, user_id))
    return success(service.get_words_by_page(page, page_size))


@api.route('/page/<int:page_number>', methods=['GET'])
@optional_auth
def words_page(page_number):
    page_size = int_arg('pageSize', code=CODE_INVALID_PAGE_SIZE)
    service = vocabulary_service()
    user_id = g.get('user_id')
    if user_id:
        return success(service.get_words_by_page_with_marks(page_number, page_size, user_id))
    return success(service.get_words_by_page(page_number, page_size))


@api.route('/words/random', methods=['GET'])
def random_words():
    count = int_arg('count')
    if count is None:
        count = DEFAULT_RANDOM_COUNT
    return success(vocabulary_service().get_random_words(count))


@api.route('/words/<word_id>', methods=['GET'])
def get_word(word_id):
    return success(vocabulary_service().get_word(word_id))


@api.route('/words/english/<english>', methods=['GET'])
def get_word_by_english(english):
    return success(vocabulary_service().get_word_by_english(english))


@api.route('/words/chinese/<chinese>', methods=['GET'])
def words_by_chinese(chinese):
    return success(vocabulary_service().get_words_by_chinese(chinese))


@api.route('/words/category/<category>', methods=['GET'])
def words_by_category(category):
    return success(vocabulary_service().get_words_by_category(category))


@api.route('/words/difficulty/<difficulty>', methods=['GET'])
def words_by_difficulty(difficulty):
    return success(vocabulary_service().get_words_by_difficulty(difficulty))


@api.route('/search', methods=['GET'])
def search_words():
    query = request.args.get('q', '')
    service = vocabulary_service()
    if request.args.get('mode') == 'regex':
        return success(service.search_words_with_regex(query))
    return success(service.search_words(query))


@api.route('/stats', methods=['GET'])
def vocabulary_stats():
    return success(vocabulary_service().get_stats())


@api.route('/words', methods=['POST'])
@admin_required
def create_word():
    word = vocabulary_service().create_word(parse_body(WordRequest))
    return success(word, status=201)


@api.route('/words/<word_id>', methods=['PUT'])
@admin_required
def update_word(word_id):
    return success(vocabulary_service().update_word(word_id, parse_body(WordRequest)))


@api.route('/words/<word_id>', methods=['DELETE'])
@admin_required
def delete_word(word_id):
    vocabulary_service().delete_word(word_id)
    return success(msg='Deleted')


@api.route('/words/import', methods=['POST'])
@admin_required
def import_words():
    if 'file' not in request.files:
        raise ValidationError("no file part", code=CODE_INVALID_REQUEST)
    file = request.files['file']
    replace = request.form.get('replace', '').lower() in TRUE_VALUES

    # openpyxl 需要可 seek 的文件对象
    entries = read_words(file.filename, io.BytesIO(file.read()))
    result = vocabulary_service().import_words(entries, replace=replace)
    return success(result, msg=f'成功导入 {result.imported} 个新单词。')


# --- 单词标记 ---

@api.route('/word-tags/mark', methods=['POST'])
@login_required
def mark_word():
    body = parse_body(WordMarkRequest)
    return success(word_tag_service().mark_as_known(body.word_id, g.user_id))


@api.route('/word-tags/unmark', methods=['POST'])
@login_required
def unmark_word():
    body = parse_body(WordMarkRequest)
    return success(word_tag_service().remove_mark(body.word_id, g.user_id))


@api.route('/word-tags/status/<word_id>', methods=['GET'])
@login_required
def mark_status(word_id):
    return success(word_tag_service().get_mark_status(word_id, g.user_id))


@api.route('/word-tags/status', methods=['POST'])
@login_required
def batch_mark_status():
    body = parse_body(BatchMarkStatusRequest)
    return success(word_tag_service().get_batch_mark_status(g.user_id, body.word_ids))


@api.route('/word-tags/progress', methods=['GET'])
@login_required
def user_progress():
    return success(word_tag_service().get_user_progress(g.user_id))


@api.route('/word-tags/known', methods=['GET'])
@login_required
def known_words():
    page, page_size = pagination_args()
    return success(vocabulary_service().get_known_words_by_user(g.user_id, page, page_size))


@api.route('/word-tags/user-stats', methods=['GET'])
@login_required
def user_word_stats():
    return success(word_tag_service().get_user_word_stats(g.user_id))


@api.route('/word-tags/forget', methods=['POST'])
@login_required
def forget_words():
    body = parse_body(ForgetWordsRequest)
    result = word_tag_service().forget_words(g.user_id, body.word_ids)
    return success(result, msg=result.message)


@api.route('/word-tags/forget-all', methods=['POST'])
@login_required
def forget_all_words():
    body = parse_body(ForgetAllRequest)
    result = word_tag_service().forget_all_words(g.user_id, body.confirm)
    return success(result, msg=result.message)


@api.route('/word-tags/stats', methods=['GET'])
@admin_required
def word_tag_stats():
    return success(word_tag_service().get_word_tag_stats())


# --- 认证 ---

@api.route('/auth/register', methods=['POST'])
def register():
    user, token = auth_service().register(parse_body(RegisterRequest))
    return success(AuthResult(user=UserOut.model_validate(user), token=token), status=201)


@api.route('/auth/login', methods=['POST'])
def login():
    user, token = auth_service().login(parse_body(LoginRequest))
    return success(AuthResult(user=UserOut.model_validate(user), token=token))


@api.route('/auth/refresh', methods=['POST'])
def refresh_token():
    token = _bearer_token()
    if token is None:
        raise Unauthorized("authorization header required", code=CODE_LOGIN_REQUIRED)
    user, new_token = auth_service().refresh_token(token)
    return success(AuthResult(user=UserOut.model_validate(user), token=new_token))


@api.route('/auth/me', methods=['GET'])
@login_required
def get_profile():
    return success(user_service().get_profile(g.user_id))


@api.route('/auth/me', methods=['PUT'])
@login_required
def update_profile():
    return success(user_service().update_profile(g.user_id, parse_body(UpdateProfileRequest)))


@api.route('/auth/password', methods=['POST'])
@login_required
def change_password():
    auth_service().change_password(g.user_id, parse_body(ChangePasswordRequest))
    return success(msg='密码修改成功')


# --- 用户管理 ---

@api.route('/admin/users', methods=['GET'])
@admin_required
def list_users():
    page, page_size = pagination_args()
    return success(user_service().list_users(1 if page is None else page, page_size))


@api.route('/admin/users/<user_id>/<action>', methods=['POST'])
@admin_required
def manage_user(user_id, action):
    service = user_service()
    actions = {
        'activate': lambda: service.set_active(user_id, True),
        'deactivate': lambda: service.set_active(user_id, False),
        'promote': lambda: service.set_role(user_id, ROLE_ADMIN),
        'demote': lambda: service.set_role(user_id, ROLE_USER),
    }
    if action not in actions:
        raise ValidationError(f"unknown action: {action}", code=CODE_INVALID_REQUEST)
    return success(actions[action]())


@api.route('/admin/users/<user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    user_service().delete_user(user_id)
    return success(msg='Deleted')


# --- 错误处理 ---

def register_error_handlers(app):

    @app.errorhandler(AppError)
    def handle_app_error(e):
        if e.status_code >= 500:
            logger.error("Request failed: %s %s code=%d error=%s", request.method, request.path, e.code, e)
        else:
            logger.info("Request rejected: %s %s code=%d error=%s", request.method, request.path, e.code, e)
        return failure(e.code, e.message, e.status_code)

    @app.errorhandler(PydanticValidationError)
    def handle_validation_error(e):
        errors = e.errors()
        if errors:
            first = errors[0]
            field = '.'.join(str(part) for part in first.get('loc', ()))
            msg = f"{field}: {first.get('msg')}" if field else first.get('msg')
        else:
            msg = get_error_message(CODE_VALIDATION_ERROR)
        return failure(CODE_VALIDATION_ERROR, msg, 400)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        code = CODE_NOT_FOUND if e.code == 404 else CODE_INVALID_REQUEST
        return failure(code, e.description, e.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error: %s %s", request.method, request.path)
        return failure(CODE_SYSTEM_ERROR, get_error_message(CODE_SYSTEM_ERROR), 500)


# --- 日志 ---

def configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get('request_started')
        duration = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        logger.info("%s %s query=%s remote=%s status=%d duration=%.1fms",
                    request.method, request.path, request.query_string.decode('utf-8', 'replace'),
                    request.remote_addr, response.status_code, duration)
        return response


# --- 命令行 ---

def register_commands(app):

    @app.cli.command('init-db')
    def init_db_command():
        """创建所有数据表"""
        db.create_all()
        click.echo('Initialized the database.')

    @app.cli.command('import-words')
    @click.argument('path', required=False)
    @click.option('--replace', is_flag=True, help='导入前清空现有单词')
    def import_words_command(path, replace):
        """从 Excel 或文本文件导入单词"""
        path = path or current_app.config['EXCEL_FILE']
        try:
            with open(path, 'rb') as f:
                entries = read_words(path, f)
            result = vocabulary_service().import_words(entries, replace=replace)
        except OSError as e:
            raise click.ClickException(f"cannot read {path}: {e}") from e
        except AppError as e:
            raise click.ClickException(e.message) from e
        click.echo(f'Imported {result.imported} words, skipped {result.skipped}.')

    @app.cli.command('create-admin')
    @click.option('--username', prompt=True)
    @click.option('--email', prompt=True)
    @click.password_option()
    def create_admin_command(username, email, password):
        """创建管理员账号"""
        try:
            user, _ = auth_service().register(
                RegisterRequest(username=username, email=email, password=password))
            user_service().set_role(user.id, ROLE_ADMIN)
        except AppError as e:
            raise click.ClickException(e.message) from e
        click.echo(f'Created admin {user.username} ({user.id}).')


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        # SQLite 不支持连接池参数
        app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {}

    configure_logging(app)
    db.init_app(app)
    app.register_blueprint(api, url_prefix='/api')
    register_error_handlers(app)
    register_commands(app)
    return app


app = create_app()


if __name__ == '__main__':
    with app.app_context():
        db.create_all()  # 只有手动运行 app.py 时才会连接真实数据库
    app.run(host='0.0.0.0', port=5000, debug=True)
