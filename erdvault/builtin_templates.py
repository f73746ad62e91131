from .model import Field, Model, MANY_TO_MANY, ONE_TO_MANY


def _id_field():
    return Field("id", "INT", is_primary_key=True, is_auto_increment=True, is_not_null=True)


def blog_model():
    model = Model()
    users = model.create_table(
        "users",
        x=40,
        y=40,
        fields=[
            _id_field(),
            Field("email", "VARCHAR(255)", is_unique=True, is_not_null=True),
            Field("display_name", "VARCHAR(100)", is_not_null=True),
            Field("created_at", "TIMESTAMP", is_not_null=True),
        ],
    )
    posts = model.create_table(
        "posts",
        x=320,
        y=40,
        fields=[
            _id_field(),
            Field("user_id", "INT", is_foreign_key=True, is_not_null=True),
            Field("title", "VARCHAR(200)", is_not_null=True),
            Field("body", "TEXT"),
            Field("status", "VARCHAR(20)", is_not_null=True, default_value="draft"),
        ],
    )
    model.create_relation(users.id, posts.id, ONE_TO_MANY, name="user posts")
    return model


def shop_model():
    model = Model()
    customers = model.create_table(
        "customers",
        x=40,
        y=40,
        fields=[
            _id_field(),
            Field("email", "VARCHAR(255)", is_unique=True, is_not_null=True),
            Field("full_name", "VARCHAR(200)", is_not_null=True),
        ],
    )
    orders = model.create_table(
        "orders",
        x=320,
        y=40,
        fields=[
            _id_field(),
            Field("customer_id", "INT", is_foreign_key=True, is_not_null=True),
            Field("placed_at", "TIMESTAMP", is_not_null=True),
            Field("total", "DECIMAL(10,2)", is_not_null=True, default_value="0"),
        ],
    )
    products = model.create_table(
        "products",
        x=600,
        y=40,
        fields=[
            _id_field(),
            Field("sku", "VARCHAR(64)", is_unique=True, is_not_null=True),
            Field("price", "DECIMAL(10,2)", is_not_null=True),
        ],
    )
    model.create_relation(customers.id, orders.id, ONE_TO_MANY, name="customer orders")
    model.create_relation(orders.id, products.id, MANY_TO_MANY, name="order lines")
    return model


# Fixed ids keep installation idempotent.
SYSTEM_TEMPLATES = (
    {
        "id": "tpl_system_blog",
        "name": "Blog",
        "description": "Users and their posts",
        "category": "starter",
        "build": blog_model,
    },
    {
        "id": "tpl_system_shop",
        "name": "Online shop",
        "description": "Customers, orders and products",
        "category": "starter",
        "build": shop_model,
    },
)
