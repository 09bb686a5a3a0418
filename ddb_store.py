# ======================================
# ddb_store.py - DynamoDB 儲存層 (訂位帳本)
# ======================================
import boto3
import os
from botocore.exceptions import BotoCoreError, ClientError
import logging
from decimal import Decimal

from errors import InvalidRequest, StorageUnavailable
from reservation import Reservation

# 設定日誌
logger = logging.getLogger(__name__)

SEQUENCE_NAME = "reservation_id"

class DynamoDBStore:
    def __init__(self, reservations_table=None, counters_table=None, settlements_table=None,
                 dynamodb=None, client=None, ensure_tables=True):
        self.VERSION = "2.0-ledger"

        # 表名配置
        self.reservations_table = reservations_table or os.environ.get('RESERVATIONS_TABLE', 'reserve-eat-reservations')
        self.counters_table = counters_table or os.environ.get('COUNTERS_TABLE', 'reserve-eat-counters')
        self.settlements_table = settlements_table or os.environ.get('SETTLEMENTS_TABLE', 'reserve-eat-settlements')

        # DynamoDB客户端
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.client = client or boto3.client('dynamodb')

        # 表引用
        self.reservations = self.dynamodb.Table(self.reservations_table)
        self.counters = self.dynamodb.Table(self.counters_table)
        self.settlements = self.dynamodb.Table(self.settlements_table)

        # 初始化表結構
        if ensure_tables:
            self._ensure_tables_exist()

    def _ensure_tables_exist(self):
        """確保所有需要的DynamoDB表存在"""
        try:
            self._create_table(self.reservations_table, 'reservation_id', extra_attributes=[
                {'AttributeName': 'owner', 'AttributeType': 'S'},
            ], indexes=[
                {
                    'IndexName': 'owner-index',
                    'KeySchema': [{'AttributeName': 'owner', 'KeyType': 'HASH'}],
                    'Projection': {'ProjectionType': 'ALL'},
                },
            ])
            self._create_table(self.counters_table, 'counter_name')
            self._create_table(self.settlements_table, 'reservation_id')
        except (ClientError, BotoCoreError) as e:
            logger.error(f"創建DynamoDB表失敗: {e}")
            raise StorageUnavailable(f"DynamoDB unavailable: {e}") from e

    def _create_table(self, table_name, hash_key, extra_attributes=(), indexes=()):
        """表不存在時才創建"""
        try:
            self.client.describe_table(TableName=table_name)
            logger.info(f"表 {table_name} 已存在")
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                raise
            logger.info(f"創建表: {table_name}")
            kwargs = {
                'TableName': table_name,
                'KeySchema': [{'AttributeName': hash_key, 'KeyType': 'HASH'}],
                'AttributeDefinitions': [{'AttributeName': hash_key, 'AttributeType': 'S'}] + list(extra_attributes),
                'BillingMode': 'PAY_PER_REQUEST',
            }
            if indexes:
                kwargs['GlobalSecondaryIndexes'] = list(indexes)
            self.client.create_table(**kwargs)

            # 等待表創建完成
            waiter = self.client.get_waiter('table_exists')
            waiter.wait(TableName=table_name)
            logger.info(f"表 {table_name} 創建成功")

    def test_connection(self):
        """測試DynamoDB連接"""
        try:
            self.client.list_tables()
            logger.info("DynamoDB連接成功")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"DynamoDB連接失敗: {e}")
            return False

    # ========== 預訂操作 ==========
    def load_reservations(self):
        """獲取所有預訂數據 - 分頁掃描"""
        reservations = []
        try:
            # 使用分頁掃描避免超時
            scan_kwargs = {}

            while True:
                response = self.reservations.scan(**scan_kwargs)

                for item in response.get('Items', []):
                    item = self._convert_from_dynamodb_format(item)
                    item.pop('reservation_id', None)
                    reservations.append(Reservation.from_dict(item))

                # 檢查是否有更多數據
                if 'LastEvaluatedKey' not in response:
                    break

                scan_kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

        except (ClientError, BotoCoreError) as e:
            logger.error(f"獲取所有預訂失敗: {e}")
            raise StorageUnavailable(f"Cannot read reservations: {e}") from e
        except (KeyError, ValueError, TypeError, InvalidRequest) as e:
            logger.error(f"預訂數據格式錯誤: {e}")
            raise StorageUnavailable(f"Malformed reservation item: {e}") from e

        reservations.sort(key=lambda r: r.numeric_id)
        logger.info(f"獲取到 {len(reservations)} 筆預訂數據")
        return reservations

    def save_reservation(self, reservation):
        """保存預訂數據"""
        try:
            self.reservations.put_item(Item=self._to_item(reservation))
            logger.info(f"預訂數據已保存: {reservation.id} ({reservation.status.value})")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"保存預訂數據失敗: {e}")
            raise StorageUnavailable(f"Cannot save reservation: {e}") from e

    def save_all(self, reservations):
        """批量寫入所有預訂"""
        try:
            with self.reservations.batch_writer() as batch:
                for reservation in reservations:
                    batch.put_item(Item=self._to_item(reservation))
            logger.info(f"保存了 {len(reservations)} 筆預訂數據")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"批量保存預訂失敗: {e}")
            raise StorageUnavailable(f"Cannot save reservations: {e}") from e

    # ========== 編號計數器 ==========
    def next_id(self):
        """原子性遞增計數器，寫入成功後才回傳新編號"""
        try:
            response = self.counters.update_item(
                Key={'counter_name': SEQUENCE_NAME},
                UpdateExpression='ADD last_value :one',
                ExpressionAttributeValues={':one': 1},
                ReturnValues='UPDATED_NEW'
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"遞增計數器失敗: {e}")
            raise StorageUnavailable(f"Cannot issue reservation id: {e}") from e
        return str(int(response['Attributes']['last_value']))

    # ========== 結帳紀錄 ==========
    def append_settlement(self, entry):
        """寫入結帳快照；同一訂單已有紀錄時直接略過"""
        try:
            item = self._convert_to_dynamodb_format(entry)
            item['reservation_id'] = entry['ID']
            self.settlements.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(reservation_id)'
            )
            logger.info(f"結帳紀錄已保存: {entry['ID']} ({entry['Payment Method']})")
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.info(f"結帳紀錄已存在，略過: {entry['ID']}")
                return
            logger.error(f"保存結帳紀錄失敗: {e}")
            raise StorageUnavailable(f"Cannot write settlement log: {e}") from e
        except BotoCoreError as e:
            logger.error(f"保存結帳紀錄失敗: {e}")
            raise StorageUnavailable(f"Cannot write settlement log: {e}") from e

    def list_settlements(self):
        """獲取所有結帳紀錄"""
        entries = []
        try:
            scan_kwargs = {}
            while True:
                response = self.settlements.scan(**scan_kwargs)
                for item in response.get('Items', []):
                    item = self._convert_from_dynamodb_format(item)
                    item.pop('reservation_id', None)
                    entries.append(item)
                if 'LastEvaluatedKey' not in response:
                    break
                scan_kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except (ClientError, BotoCoreError) as e:
            logger.error(f"獲取結帳紀錄失敗: {e}")
            raise StorageUnavailable(f"Cannot read settlement log: {e}") from e
        entries.sort(key=lambda e: e.get('Settled At', ''))
        return entries

    # ========== 工具方法 ==========
    def _to_item(self, reservation):
        item = self._convert_to_dynamodb_format(reservation.to_dict())
        item['reservation_id'] = reservation.id
        return item

    def _convert_to_dynamodb_format(self, data):
        """轉換為DynamoDB格式"""
        if isinstance(data, dict):
            return {k: self._convert_value_to_dynamodb(v) for k, v in data.items()}
        return data

    def _convert_from_dynamodb_format(self, data):
        """從DynamoDB格式轉換"""
        if isinstance(data, dict):
            return {k: self._convert_value_from_dynamodb(v) for k, v in data.items()}
        return data

    def _convert_value_to_dynamodb(self, value):
        """轉換單個值為DynamoDB格式"""
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    def _convert_value_from_dynamodb(self, value):
        """從DynamoDB格式轉換單個值"""
        if isinstance(value, Decimal):
            return float(value) if value % 1 else int(value)
        return value
