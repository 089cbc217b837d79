"""
Loyalty engine entry point.
"""
import os
import sys
import traceback

print("[LoyaltyEngine] ========================================")
print("[LoyaltyEngine] Starting loyalty engine v1.0.0")
print("[LoyaltyEngine] ========================================")

config_name = os.getenv('FLASK_ENV', 'production')
print(f"[LoyaltyEngine] Config: {config_name}")
print(f"[LoyaltyEngine] PORT: {os.getenv('PORT', 'not set')}")
print(f"[LoyaltyEngine] DATABASE_URL: {'set' if os.getenv('DATABASE_URL') else 'NOT SET'}")

try:
    from loyalty_engine import create_app
    app = create_app(config_name)
    print(f"[LoyaltyEngine] App created, {len(list(app.url_map.iter_rules()))} routes")
except Exception as e:
    print(f"[LoyaltyEngine] FATAL ERROR during app creation: {e}")
    traceback.print_exc()
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
