from __future__ import annotations

from typing import Any

SUPPORTED_LANGUAGES = {"id", "en"}

TEXTS: dict[str, dict[str, str]] = {
    "id": {
        "welcome": (
            "🎮 <b>Selamat Datang, {name}!</b>\n\n"
            "✨ <b>BOT PEMBELIAN LISENSI FREE FIRE</b> ✨\n\n"
            "💰 <b>Point Anda:</b> {points} points\n\n"
            "🛒 <b>Fitur yang tersedia:</b>\n"
            "• Beli lisensi baru\n"
            "• Extend masa aktif akun\n"
            "• Tukar point dengan lisensi gratis\n"
            "• Support Free Fire & Free Fire MAX\n"
            "• Pembayaran QRIS otomatis\n\n"
            "💰 <b>Harga mulai dari {min_price}</b>\n"
            "🎁 <b>Dapatkan point untuk setiap pembelian!</b>\n\n"
            "⏰ <b>Pembayaran otomatis terdeteksi dalam {ttl_minutes} menit!</b>\n\n"
            "Silakan pilih menu di bawah:"
        ),
        "main_menu": "🏠 <b>Menu Utama</b>\n\n💰 <b>Point Anda:</b> {points} points\n\nSilakan pilih menu yang diinginkan:",
        "menu_new": "🛒 Beli Lisensi Baru",
        "menu_extend": "⏰ Extend Masa Aktif",
        "menu_redeem": "🎁 Tukar Point",
        "menu_points": "💰 Poin Saya",
        "menu_help": "ℹ️ Bantuan",
        "menu_home": "🏠 Menu Utama",
        "back": "↩️ Kembali",
        "cancel_order": "❌ Batalkan Pesanan",
        "points_info": (
            "💰 <b>POINT ANDA</b>\n\n"
            "Total Point: <b>{points} points</b>\n\n"
            "📊 <b>Cara mendapatkan point:</b>\n{earn_table}\n\n"
            "🎁 <b>Tukar point dengan lisensi gratis!</b>\n"
            "{rate} points = 1 hari lisensi gratis"
        ),
        "earn_line": "• Beli lisensi {days} hari = {points} point",
        "choose_product_new": "👋 <b>Halo!</b>\n\nSilakan pilih jenis Free Fire yang ingin Anda beli:",
        "choose_product_extend": "🎮 <b>EXTEND MASA AKTIF</b>\n\nPilih jenis Free Fire yang ingin di-extend:",
        "choose_product_redeem": "🎁 <b>TUKAR POINT</b>\n\nLisensi gratis {days} hari.\nPilih jenis Free Fire:",
        "choose_duration": "🛒 <b>{product}</b>\n\nPilih durasi lisensi:",
        "duration_button": "{days} Hari - {price} (+{points} pt)",
        "extend_ask_key": "🔑 <b>{product}</b>\n\nKirim key lisensi yang ingin di-extend:",
        "extend_choose_duration": "🔑 Key: <code>{key}</code>\n\nPilih durasi extend:",
        "redeem_menu": (
            "🎁 <b>TUKAR POINT</b>\n\n"
            "💰 <b>Point Anda:</b> {points} points\n\n"
            "📊 <b>Rate Penukaran:</b>\n{rate_table}\n\n"
            "Pilih durasi yang ingin ditukar:"
        ),
        "redeem_line": "• {days} Hari = {cost} points",
        "redeem_button": "{days} Hari - {cost} points",
        "help": (
            "ℹ️ <b>BANTUAN</b>\n\n"
            "💰 <b>Point Anda:</b> {points} points\n\n"
            "📝 <b>Cara Penggunaan:</b>\n"
            "1. Pilih 'Beli Lisensi Baru' untuk pembelian baru\n"
            "2. Pilih 'Extend Masa Aktif' untuk memperpanjang\n"
            "3. Pilih 'Tukar Point' untuk lisensi gratis\n"
            "4. Ikuti instruksi yang diberikan\n\n"
            "🎁 <b>Sistem Point:</b>\n"
            "• Dapatkan point dari setiap pembelian\n"
            "• {rate} points = 1 hari lisensi gratis\n"
            "• Point tidak memiliki masa kedaluwarsa\n\n"
            "⏰ <b>Pembayaran Otomatis:</b>\n"
            "• QR berlaku selama {ttl_minutes} menit\n"
            "• Cek pembayaran otomatis setiap {poll_seconds} detik\n"
            "• QR terhapus otomatis jika tidak dibayar\n"
            "• Pesan sukses tidak akan dihapus\n\n"
            "❓ <b>Pertanyaan?</b>\nHubungi admin jika ada kendala {support}"
        ),
        "payment_caption": (
            "💳 <b>PEMBAYARAN QRIS</b>\n\n"
            "🆔 Order: <code>{order_id}</code>\n"
            "🎮 Produk: {product}\n"
            "⏳ Durasi: {days} hari\n"
            "💰 Total: <b>{price}</b>\n\n"
            "Scan QR di atas dengan aplikasi pembayaran apa pun.\n"
            "⏰ QR berlaku {ttl_minutes} menit, pembayaran dicek otomatis."
        ),
        "purchase_success": (
            "✅ <b>PEMBAYARAN BERHASIL!</b>\n\n"
            "🆔 Order: <code>{order_id}</code>\n"
            "🎮 Produk: {product}\n"
            "🔑 Key: <code>{key}</code>\n"
            "📅 Aktif sampai: {expires}\n\n"
            "🎁 +{points} point (total {balance} points)"
        ),
        "extend_success": (
            "✅ <b>EXTEND BERHASIL!</b>\n\n"
            "🔑 Key: <code>{key}</code>\n"
            "📅 Aktif sampai: {expires}\n\n"
            "🎁 +{points} point (total {balance} points)"
        ),
        "redeem_success": (
            "🎁 <b>PENUKARAN BERHASIL!</b>\n\n"
            "🔑 Key: <code>{key}</code>\n"
            "📅 Aktif sampai: {expires}\n\n"
            "💰 -{points} points (sisa {balance} points)"
        ),
        "order_expired": "⌛ <b>Waktu pembayaran habis.</b>\n\nOrder <code>{order_id}</code> dibatalkan. Silakan buat pesanan baru.",
        "order_cancelled": "❌ Order <code>{order_id}</code> dibatalkan.",
        "order_superseded": "ℹ️ Order sebelumnya <code>{order_id}</code> dibatalkan karena Anda membuat pesanan baru.",
        "payment_deferred": "✅ Pembayaran untuk order <code>{order_id}</code> diterima. Key sedang disiapkan, mohon tunggu.",
        "out_of_stock_review": (
            "⚠️ <b>Pembayaran diterima, tetapi stok key sedang habis.</b>\n\n"
            "Order <code>{order_id}</code> dicatat untuk diproses manual oleh admin. "
            "Dana Anda aman. Hubungi {support} dengan menyebutkan nomor order."
        ),
        "redeem_out_of_stock": "⚠️ Stok key sedang habis. Point Anda tidak dipotong, silakan coba lagi nanti.",
        "admin_review": "🛠 Manual review: order <code>{order_id}</code> chat <code>{chat_id}</code> ({reason}).",
        "keys_added": "✅ {added} key ditambahkan ke {product}. Stok tersedia: {available}.",
        "addkeys_usage": "Format: /addkeys FF|FFMAX KEY1 KEY2 ...",
        "no_active_order": "Tidak ada pesanan aktif.",
        "use_menu": "Silakan gunakan menu inline untuk melanjutkan.",
        "hello_hint": "Halo {name}! Gunakan /start untuk memulai atau pilih dari menu.",
        "unknown_command": "❌ Perintah tidak dikenali. Silakan coba lagi.",
        "processing": "Memproses...",
        "generic_error": "❌ Terjadi kesalahan. Silakan coba lagi atau gunakan /start",
        "error_insufficient_points": "❌ Point Anda tidak cukup. Dibutuhkan {cost} points, Anda memiliki {points} points.",
        "error_invalid_product": "❌ Produk tidak valid. Silakan mulai lagi dengan /start",
        "error_invalid_duration": "❌ Durasi tidak valid. Silakan mulai lagi dengan /start",
        "error_unknown_license": "❌ Key tidak ditemukan di akun Anda. Periksa kembali key yang dikirim.",
        "error_flow_expired": "❌ Sesi pilihan sudah tidak berlaku. Silakan mulai lagi dengan /start",
        "error_payment_unavailable": "❌ Pembayaran QRIS sedang tidak tersedia. Silakan coba lagi nanti.",
    },
    "en": {
        "welcome": (
            "🎮 <b>Welcome, {name}!</b>\n\n"
            "✨ <b>FREE FIRE LICENSE SHOP</b> ✨\n\n"
            "💰 <b>Your points:</b> {points} points\n\n"
            "🛒 <b>What you can do:</b>\n"
            "• Buy a new license\n"
            "• Extend an existing license\n"
            "• Redeem points for a free license\n"
            "• Free Fire & Free Fire MAX\n"
            "• Automatic QRIS payments\n\n"
            "💰 <b>Prices from {min_price}</b>\n"
            "🎁 <b>Every purchase earns points!</b>\n\n"
            "⏰ <b>Payments are detected automatically within {ttl_minutes} minutes!</b>\n\n"
            "Choose an option below:"
        ),
        "main_menu": "🏠 <b>Main menu</b>\n\n💰 <b>Your points:</b> {points} points\n\nChoose an option:",
        "menu_new": "🛒 Buy new license",
        "menu_extend": "⏰ Extend license",
        "menu_redeem": "🎁 Redeem points",
        "menu_points": "💰 My points",
        "menu_help": "ℹ️ Help",
        "menu_home": "🏠 Main menu",
        "back": "↩️ Back",
        "cancel_order": "❌ Cancel order",
        "points_info": (
            "💰 <b>YOUR POINTS</b>\n\n"
            "Total: <b>{points} points</b>\n\n"
            "📊 <b>How to earn points:</b>\n{earn_table}\n\n"
            "🎁 <b>Redeem points for a free license!</b>\n"
            "{rate} points = 1 free license day"
        ),
        "earn_line": "• {days}-day license = {points} point(s)",
        "choose_product_new": "👋 <b>Hi!</b>\n\nWhich Free Fire edition do you want to buy?",
        "choose_product_extend": "🎮 <b>EXTEND LICENSE</b>\n\nWhich Free Fire edition do you want to extend?",
        "choose_product_redeem": "🎁 <b>REDEEM POINTS</b>\n\nFree {days}-day license.\nChoose the Free Fire edition:",
        "choose_duration": "🛒 <b>{product}</b>\n\nChoose the license duration:",
        "duration_button": "{days} days - {price} (+{points} pt)",
        "extend_ask_key": "🔑 <b>{product}</b>\n\nSend the license key you want to extend:",
        "extend_choose_duration": "🔑 Key: <code>{key}</code>\n\nChoose how long to extend:",
        "redeem_menu": (
            "🎁 <b>REDEEM POINTS</b>\n\n"
            "💰 <b>Your points:</b> {points} points\n\n"
            "📊 <b>Rates:</b>\n{rate_table}\n\n"
            "Choose a duration to redeem:"
        ),
        "redeem_line": "• {days} days = {cost} points",
        "redeem_button": "{days} days - {cost} points",
        "help": (
            "ℹ️ <b>HELP</b>\n\n"
            "💰 <b>Your points:</b> {points} points\n\n"
            "📝 <b>How it works:</b>\n"
            "1. 'Buy new license' for a new key\n"
            "2. 'Extend license' to add days to your key\n"
            "3. 'Redeem points' for a free license\n"
            "4. Follow the instructions\n\n"
            "🎁 <b>Points:</b>\n"
            "• Every purchase earns points\n"
            "• {rate} points = 1 free license day\n"
            "• Points never expire\n\n"
            "⏰ <b>Automatic payments:</b>\n"
            "• The QR code is valid for {ttl_minutes} minutes\n"
            "• Payment is checked every {poll_seconds} seconds\n"
            "• Unpaid QR codes are removed automatically\n"
            "• Success messages are never removed\n\n"
            "❓ <b>Questions?</b>\nContact {support}"
        ),
        "payment_caption": (
            "💳 <b>QRIS PAYMENT</b>\n\n"
            "🆔 Order: <code>{order_id}</code>\n"
            "🎮 Product: {product}\n"
            "⏳ Duration: {days} days\n"
            "💰 Total: <b>{price}</b>\n\n"
            "Scan the QR code with any payment app.\n"
            "⏰ Valid for {ttl_minutes} minutes, payment is checked automatically."
        ),
        "purchase_success": (
            "✅ <b>PAYMENT RECEIVED!</b>\n\n"
            "🆔 Order: <code>{order_id}</code>\n"
            "🎮 Product: {product}\n"
            "🔑 Key: <code>{key}</code>\n"
            "📅 Active until: {expires}\n\n"
            "🎁 +{points} point(s) (total {balance} points)"
        ),
        "extend_success": (
            "✅ <b>LICENSE EXTENDED!</b>\n\n"
            "🔑 Key: <code>{key}</code>\n"
            "📅 Active until: {expires}\n\n"
            "🎁 +{points} point(s) (total {balance} points)"
        ),
        "redeem_success": (
            "🎁 <b>REDEMPTION COMPLETE!</b>\n\n"
            "🔑 Key: <code>{key}</code>\n"
            "📅 Active until: {expires}\n\n"
            "💰 -{points} points ({balance} points left)"
        ),
        "order_expired": "⌛ <b>Payment time is over.</b>\n\nOrder <code>{order_id}</code> was closed. Please create a new order.",
        "order_cancelled": "❌ Order <code>{order_id}</code> was cancelled.",
        "order_superseded": "ℹ️ Your previous order <code>{order_id}</code> was cancelled because you started a new one.",
        "payment_deferred": "✅ Payment for order <code>{order_id}</code> received. Your key is being prepared, please wait.",
        "out_of_stock_review": (
            "⚠️ <b>Payment received, but we are out of keys right now.</b>\n\n"
            "Order <code>{order_id}</code> was recorded for manual processing. "
            "Your money is safe. Contact {support} and mention the order number."
        ),
        "redeem_out_of_stock": "⚠️ Out of keys right now. Your points were not deducted, please try again later.",
        "admin_review": "🛠 Manual review: order <code>{order_id}</code> chat <code>{chat_id}</code> ({reason}).",
        "keys_added": "✅ Added {added} key(s) to {product}. Available: {available}.",
        "addkeys_usage": "Usage: /addkeys FF|FFMAX KEY1 KEY2 ...",
        "no_active_order": "You have no active order.",
        "use_menu": "Please use the inline menu to continue.",
        "hello_hint": "Hi {name}! Send /start to begin or pick an option from the menu.",
        "unknown_command": "❌ Unknown action. Please try again.",
        "processing": "Processing...",
        "generic_error": "❌ Something went wrong. Please try again or send /start",
        "error_insufficient_points": "❌ Not enough points. You need {cost} points and have {points}.",
        "error_invalid_product": "❌ Invalid product. Please start again with /start",
        "error_invalid_duration": "❌ Invalid duration. Please start again with /start",
        "error_unknown_license": "❌ That key is not registered to your account. Please check it and try again.",
        "error_flow_expired": "❌ This selection is no longer valid. Please start again with /start",
        "error_payment_unavailable": "❌ QRIS payments are unavailable right now. Please try again later.",
    },
}


def t(lang: str, text_key: str, **params: Any) -> str:
    normalized = lang if lang in SUPPORTED_LANGUAGES else "id"
    template = TEXTS.get(normalized, TEXTS["id"]).get(text_key, TEXTS["id"].get(text_key, text_key))
    if not params:
        return template
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template
