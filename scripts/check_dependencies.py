# scripts/check_dependencies.py
import importlib
import sys

# Имя пакета в индексе -> имя модуля
required_packages = {
    "fastapi": "fastapi",
    "uvicorn": "uvicorn",
    "sqlalchemy": "sqlalchemy",
    "httpx": "httpx",
    "celery": "celery",
    "redis": "redis",
    "pydantic": "pydantic",
    "pydantic-settings": "pydantic_settings",
    "python-dotenv": "dotenv",
}

missing_packages = []

for package, module in required_packages.items():
    try:
        importlib.import_module(module)
        print(f"✅ {package}")
    except ImportError:
        missing_packages.append(package)
        print(f"❌ {package}")

if missing_packages:
    print(f"\nОтсутствуют пакеты: {', '.join(missing_packages)}")
    print("Установите командой: pip install " + " ".join(missing_packages))
    sys.exit(1)
else:
    print("\n✅ Все зависимости установлены!")
